# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for the notification service and CLI entry point."""

import json
import logging
import threading
from concurrent.futures import wait
from pathlib import Path
from unittest.mock import MagicMock, patch

import httpx
import pytest
from werkzeug.test import Client

from mailalert.config import ConfigError
from mailalert.dispatch import DeliveryState
from mailalert.service import NotificationService, _load_config, main


class RecordingChannel:
    """Channel that always succeeds and records what it sent."""

    channel_id = "recording"
    name = "Recording"

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, str]] = []
        self._lock = threading.Lock()

    def send(self, sender: str, to: str, subject: str) -> None:
        with self._lock:
            self.calls.append((sender, to, subject))


def _body(**overrides: object) -> bytes:
    payload: dict[str, object] = {
        "context": {"stage": "DATA", "queue": {"id": "q1"}},
        "envelope": {
            "from": {"address": "a@x.com"},
            "to": [{"address": "b@y.com"}],
        },
        "message": {
            "headers": [
                ["From", "=?UTF-8?Q?Zhang_San?= <a@x.com>"],
                ["Subject", "Hi"],
            ],
            "contents": "",
        },
    }
    payload.update(overrides)
    return json.dumps(payload).encode()


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def service(make_config, channel):
    svc = NotificationService(
        make_config(), channels=[channel], sleep=lambda _: None
    )
    yield svc
    svc.stop()


class TestProcessPayload:
    """Tests for hook request processing."""

    def test_end_to_end_metadata(self, service, channel) -> None:
        """Decoded sender, subject and envelope recipients reach the channel."""
        futures = service._process_payload(_body())
        wait(futures, timeout=5)

        assert channel.calls == [("Zhang San <a@x.com>", "b@y.com", "Hi")]
        assert futures[0].result().state is DeliveryState.SUCCEEDED

    def test_parse_error_dropped(
        self, service, channel, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Malformed bodies are logged and dropped."""
        with caplog.at_level(logging.ERROR):
            assert service._process_payload(b"{not json") == []

        assert channel.calls == []
        assert "Failed to parse hook request" in caplog.text

    def test_recipient_filtered(
        self, make_config, channel, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Mail for recipients not on the allow-list is skipped."""
        svc = NotificationService(
            make_config(allowed_recipients=frozenset({"alerts@example.com"})),
            channels=[channel],
        )
        try:
            with caplog.at_level(logging.INFO):
                assert svc._process_payload(_body()) == []
        finally:
            svc.stop()

        assert channel.calls == []
        assert "non-whitelisted recipient" in caplog.text

    def test_recipient_allowed(self, make_config, channel) -> None:
        """Mail for an allowed recipient is dispatched."""
        svc = NotificationService(
            make_config(allowed_recipients=frozenset({"b@y.com"})),
            channels=[channel],
        )
        try:
            wait(svc._process_payload(_body()), timeout=5)
        finally:
            svc.stop()

        assert len(channel.calls) == 1


class TestWebhookFlow:
    """Tests for the full path from HTTP request to provider call."""

    def test_post_delivers_via_ntfy(self, make_config, transport) -> None:
        """A hook POST produces one ntfy publish."""
        svc = NotificationService(make_config(), transport=transport)
        client = Client(svc.server._wsgi_app)

        response = client.post("/", data=_body())
        svc.stop()

        assert json.loads(response.get_data(as_text=True)) == {
            "action": "accept"
        }
        assert len(transport.requests) == 1
        request = transport.requests[0]
        assert str(request.url) == "https://ntfy.example/mail"
        assert request.headers["Title"] == "Hi"
        assert request.content == b"From: Zhang San <a@x.com>\nTo: b@y.com"

    def test_unauthenticated_not_delivered(self, make_config, transport) -> None:
        """Requests failing authentication never reach a channel."""
        svc = NotificationService(
            make_config(auth_token="s3cret-token"), transport=transport
        )
        client = Client(svc.server._wsgi_app)

        response = client.post("/", data=_body())
        svc.stop()

        assert response.status_code == 200
        assert transport.requests == []

    def test_retries_failing_provider(
        self, make_config, make_transport
    ) -> None:
        """A provider failing once is retried and then succeeds."""
        statuses = iter([503, 200])
        transport = make_transport(
            lambda request: httpx.Response(next(statuses))
        )
        sleeps: list[float] = []
        svc = NotificationService(
            make_config(), transport=transport, sleep=sleeps.append
        )
        try:
            futures = svc._process_payload(_body())
            wait(futures, timeout=5)
        finally:
            svc.stop()

        assert len(transport.requests) == 2
        assert sleeps == [0.5]
        assert futures[0].result().attempts == 2


class TestServiceLifecycle:
    """Tests for start/stop."""

    def test_submit_after_stop(self, service) -> None:
        """Bodies submitted after stop are refused."""
        service.stop()
        assert service.submit(_body()) is False

    def test_stop_idempotent(self, service) -> None:
        """Stopping twice is harmless."""
        service.stop()
        service.stop()

    def test_start_non_blocking_logs_banner(
        self, make_config, channel, caplog: pytest.LogCaptureFixture
    ) -> None:
        """The banner shows the masked token and channels."""
        svc = NotificationService(
            make_config(auth_token="abcdefghijkl", host="127.0.0.1", port=18025),
            channels=[channel],
        )
        svc.server = MagicMock()
        with caplog.at_level(logging.INFO):
            svc.start(block=False)
        svc.stop()

        assert "abcd****ijkl" in caplog.text
        assert "Recording" in caplog.text
        svc.server.start.assert_called_once_with()
        svc.server.stop.assert_called_once_with()

    def test_start_blocks_until_stop(self, service) -> None:
        """start(block=True) returns once stop is called."""
        service.server = MagicMock()
        timer = threading.Timer(0.1, service.stop)
        timer.start()
        service.start()
        timer.join()
        assert service._shutdown_event.is_set()


class TestLoadConfig:
    """Tests for configuration source selection."""

    def test_explicit_path(self, tmp_path: Path) -> None:
        """An explicit path is always read as YAML."""
        path = tmp_path / "custom.yaml"
        with patch("mailalert.service.ServerConfig") as mock_config:
            _load_config(path)
        mock_config.from_yaml.assert_called_once_with(config_path=path)

    def test_default_yaml_present(self, tmp_path: Path) -> None:
        """The default YAML file is used when it exists."""
        path = tmp_path / "mailalert.yaml"
        path.touch()
        with (
            patch("mailalert.service.get_config_path", return_value=path),
            patch("mailalert.service.ServerConfig") as mock_config,
        ):
            _load_config(None)
        mock_config.from_yaml.assert_called_once_with()
        mock_config.from_env.assert_not_called()

    def test_env_fallback(self, tmp_path: Path) -> None:
        """Without a YAML file the environment is used."""
        with (
            patch(
                "mailalert.service.get_config_path",
                return_value=tmp_path / "missing.yaml",
            ),
            patch("mailalert.service.ServerConfig") as mock_config,
        ):
            _load_config(None)
        mock_config.from_env.assert_called_once_with()


class TestMain:
    """Tests for the CLI entry point."""

    @pytest.fixture(autouse=True)
    def _no_logging_setup(self):
        with (
            patch("mailalert.service.configure_logging"),
            patch("mailalert.service.signal.signal"),
        ):
            yield

    def test_config_error(self) -> None:
        """Configuration errors exit with 1."""
        with patch(
            "mailalert.service._load_config",
            side_effect=ConfigError("no channels"),
        ):
            assert main([]) == 1

    def test_validation_error(self) -> None:
        """Dataclass validation errors are configuration errors too."""
        with patch(
            "mailalert.service._load_config",
            side_effect=ValueError("Port must be within 1-65535: 0"),
        ):
            assert main([]) == 1

    def test_init_error(self) -> None:
        """Service construction failures exit with 2."""
        with (
            patch("mailalert.service._load_config"),
            patch(
                "mailalert.service.NotificationService",
                side_effect=RuntimeError("boom"),
            ),
        ):
            assert main([]) == 2

    def test_bind_error(self) -> None:
        """Failure to bind the listen address exits with 2."""
        with (
            patch("mailalert.service._load_config"),
            patch("mailalert.service.NotificationService") as mock_service,
        ):
            mock_service.return_value.start.side_effect = OSError(
                "Address already in use"
            )
            assert main([]) == 2
        mock_service.return_value.stop.assert_called_once_with()

    def test_runtime_error(self) -> None:
        """Unexpected runtime errors exit with 3."""
        with (
            patch("mailalert.service._load_config"),
            patch("mailalert.service.NotificationService") as mock_service,
        ):
            mock_service.return_value.start.side_effect = RuntimeError("x")
            assert main([]) == 3

    def test_clean_exit(self, tmp_path: Path) -> None:
        """A normal run exits with 0 and passes --config through."""
        path = tmp_path / "mailalert.yaml"
        with (
            patch("mailalert.service._load_config") as mock_load,
            patch("mailalert.service.NotificationService") as mock_service,
        ):
            assert main(["--config", str(path)]) == 0
        mock_load.assert_called_once_with(path)
        mock_service.return_value.start.assert_called_once_with()
        mock_service.return_value.stop.assert_called_once_with()

    def test_debug_flag(self) -> None:
        """--debug enables debug logging."""
        with (
            patch("mailalert.service._load_config"),
            patch("mailalert.service.NotificationService"),
            patch("mailalert.service.configure_logging") as mock_logging,
        ):
            main(["--debug"])
        mock_logging.assert_called_once_with(
            level=logging.DEBUG, add_secret_filter=True
        )
