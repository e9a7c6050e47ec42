# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Webhook HTTP server.

Serves the MTA hook endpoint and a health check.  The hook endpoint
answers ``{"action": "accept"}`` to every POST: the alert relay must never
cause mail to be rejected or delayed.  Authenticated request bodies are
handed to a submit callback and processed elsewhere.
"""

import json
import logging
import threading
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from werkzeug.wrappers.response import StartResponse

from werkzeug.exceptions import MethodNotAllowed, NotFound
from werkzeug.routing import Map, Rule
from werkzeug.serving import make_server
from werkzeug.wrappers import Request, Response

from mailalert import __version__
from mailalert.hook.security import HookAuthenticator


logger = logging.getLogger(__name__)

ACCEPT_RESPONSE = {"action": "accept"}


def _json_response(payload: dict[str, Any], status: int = 200) -> Response:
    return Response(
        json.dumps(payload),
        status=status,
        content_type="application/json",
    )


class WebhookServer:
    """WSGI server for MTA hook callbacks.

    Runs in a background thread.
    """

    def __init__(
        self,
        submit: Callable[[bytes], object],
        authenticator: HookAuthenticator | None = None,
        host: str = "0.0.0.0",
        port: int = 8000,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize webhook server.

        Args:
            submit: Called with the raw body of each authenticated hook
                request.  Must not block.
            authenticator: Request authenticator.  Defaults to one with
                authentication disabled.
            host: Host to bind to.
            port: Port to bind to.
            clock: Returns the current time for the health endpoint.
        """
        self.submit = submit
        self.authenticator = authenticator or HookAuthenticator()
        self.host = host
        self.port = port
        self._clock = clock or (lambda: datetime.now(UTC))
        self._server: Any = None
        self._thread: threading.Thread | None = None

        self._url_map = Map(
            [
                Rule("/", endpoint="hook", methods=["POST"]),
                Rule("/health", endpoint="health", methods=["GET"]),
            ]
        )

        self._endpoint_handlers = {
            "hook": self.handle_hook,
            "health": self.handle_health,
        }

    def start(self) -> None:
        """Start the server in a background thread."""
        self._server = make_server(
            self.host,
            self.port,
            self._wsgi_app,
            threaded=True,
        )
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            daemon=True,
            name="WebhookServer",
        )
        self._thread.start()
        logger.info(
            "Webhook server listening on http://%s:%d/", self.host, self.port
        )

    def stop(self) -> None:
        """Stop accepting requests."""
        if self._server:
            self._server.shutdown()
            self._server = None
            logger.info("Webhook server stopped")

    def handle_hook(self, request: Request) -> Response:
        """Handle an MTA hook callback.

        Args:
            request: Incoming request.

        Returns:
            The accept acknowledgment, whether or not the request was
            authenticated.
        """
        if self.authenticator.authenticate(
            request.headers, remote_addr=request.remote_addr
        ):
            self.submit(request.get_data())
        return _json_response(ACCEPT_RESPONSE)

    def handle_health(self, request: Request) -> Response:
        """Handle health check endpoint.

        Args:
            request: Incoming request.

        Returns:
            JSON status with current UTC time and service version.
        """
        now = self._clock().astimezone(UTC)
        return _json_response(
            {
                "status": "ok",
                "time": now.strftime("%Y-%m-%dT%H:%M:%SZ"),
                "version": __version__,
            }
        )

    def _wsgi_app(
        self,
        environ: dict[str, Any],
        start_response: "StartResponse",
    ) -> Iterable[bytes]:
        """WSGI application entry point.

        Args:
            environ: WSGI environ dict.
            start_response: WSGI start_response callable.

        Returns:
            Response body iterable.
        """
        request = Request(environ)
        response = self._dispatch(request)
        return response(environ, start_response)

    def _dispatch(self, request: Request) -> Response:
        """Route request to appropriate handler.

        Args:
            request: Incoming request.

        Returns:
            Response to send.
        """
        adapter = self._url_map.bind_to_environ(request.environ)
        try:
            endpoint, values = adapter.match()
            handler = self._endpoint_handlers[endpoint]
            return handler(request, **values)
        except NotFound:
            return Response("Not Found", status=404)
        except MethodNotAllowed as e:
            return Response(
                "Method Not Allowed",
                status=405,
                headers={"Allow": ", ".join(e.valid_methods or [])},
            )
        except Exception:
            logger.exception("Error handling request %s", request.path)
            return Response("Internal Server Error", status=500)
