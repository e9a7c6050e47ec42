# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for the webhook server (WSGI application and routing)."""

import json
from datetime import UTC, datetime, timedelta, timezone
from unittest.mock import MagicMock

from werkzeug.test import Client

from mailalert import __version__
from mailalert.hook.security import HookAuthenticator
from mailalert.server import WebhookServer


BODY = json.dumps({"envelope": {"to": [{"address": "b@y.com"}]}}).encode()


class TestWebhookServer:
    """Tests for WebhookServer WSGI application."""

    def test_init_defaults(self) -> None:
        """Server defaults to all interfaces on port 8000."""
        server = WebhookServer(MagicMock())

        assert server.host == "0.0.0.0"
        assert server.port == 8000
        assert not server.authenticator.enabled

    def test_hook_accepts_and_submits(self) -> None:
        """POST / acknowledges and hands the body over exactly once."""
        submit = MagicMock()
        client = Client(WebhookServer(submit)._wsgi_app)

        response = client.post("/", data=BODY, content_type="application/json")

        assert response.status_code == 200
        assert response.content_type == "application/json"
        assert json.loads(response.get_data(as_text=True)) == {
            "action": "accept"
        }
        submit.assert_called_once_with(BODY)

    def test_hook_authenticated(self) -> None:
        """A request with the right token is submitted."""
        submit = MagicMock()
        server = WebhookServer(submit, HookAuthenticator("s3cret-token"))
        client = Client(server._wsgi_app)

        response = client.post(
            "/",
            data=BODY,
            headers={"Authorization": "Bearer s3cret-token"},
        )

        assert response.status_code == 200
        submit.assert_called_once_with(BODY)

    def test_hook_unauthenticated_still_accepts(self) -> None:
        """A bad token is acknowledged but not processed."""
        submit = MagicMock()
        server = WebhookServer(submit, HookAuthenticator("s3cret-token"))
        client = Client(server._wsgi_app)

        response = client.post(
            "/", data=BODY, headers={"X-Notify-Auth": "wrong"}
        )

        assert response.status_code == 200
        assert json.loads(response.get_data(as_text=True)) == {
            "action": "accept"
        }
        submit.assert_not_called()

    def test_hook_malformed_body_still_accepts(self) -> None:
        """Parsing happens later; the endpoint acknowledges anything."""
        submit = MagicMock()
        client = Client(WebhookServer(submit)._wsgi_app)

        response = client.post("/", data=b"not json")

        assert response.status_code == 200
        submit.assert_called_once_with(b"not json")

    def test_hook_get_not_allowed(self) -> None:
        """Methods other than POST on / are rejected."""
        submit = MagicMock()
        client = Client(WebhookServer(submit)._wsgi_app)

        response = client.get("/")

        assert response.status_code == 405
        assert "POST" in response.headers["Allow"]
        submit.assert_not_called()

    def test_health(self) -> None:
        """GET /health reports status, UTC time and version."""
        fixed = datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)
        server = WebhookServer(MagicMock(), clock=lambda: fixed)
        client = Client(server._wsgi_app)

        response = client.get("/health")

        assert response.status_code == 200
        assert response.content_type == "application/json"
        assert json.loads(response.get_data(as_text=True)) == {
            "status": "ok",
            "time": "2026-01-02T03:04:05Z",
            "version": __version__,
        }

    def test_health_converts_to_utc(self) -> None:
        """Clock values in other zones are reported in UTC."""
        local = datetime(
            2026, 1, 2, 12, 0, 0, tzinfo=timezone(timedelta(hours=8))
        )
        server = WebhookServer(MagicMock(), clock=lambda: local)
        client = Client(server._wsgi_app)

        data = json.loads(client.get("/health").get_data(as_text=True))

        assert data["time"] == "2026-01-02T04:00:00Z"

    def test_health_post_not_allowed(self) -> None:
        """The health endpoint only answers GET."""
        client = Client(WebhookServer(MagicMock())._wsgi_app)
        assert client.post("/health").status_code == 405

    def test_unknown_path(self) -> None:
        """Unknown paths give 404."""
        client = Client(WebhookServer(MagicMock())._wsgi_app)
        assert client.get("/nope").status_code == 404

    def test_handler_error(self) -> None:
        """Handler exceptions give 500."""
        submit = MagicMock(side_effect=RuntimeError("boom"))
        client = Client(WebhookServer(submit)._wsgi_app)

        response = client.post("/", data=BODY)

        assert response.status_code == 500

    def test_start_stop(self) -> None:
        """The server binds, serves in a thread and stops."""
        server = WebhookServer(MagicMock(), host="127.0.0.1", port=0)
        server.start()
        try:
            assert server._thread is not None
            assert server._thread.is_alive()
        finally:
            server.stop()
        assert server._server is None
