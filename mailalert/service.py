# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Notification service and command-line entry point.

Wires the webhook server, the hook processing pool and the delivery
dispatcher together.  Request handling is split across two pools:

- ``HookWorker`` threads parse the hook body, extract alert metadata,
  apply the recipient allow-list and hand the alert to the dispatcher.
- ``ChannelWorker`` threads (owned by the dispatcher, one pool per
  channel) run the per-channel retry loops.

The webhook handler only submits to the hook pool, and the hook pool
only submits to the channel pools, so no thread ever waits on its own pool.
"""

import argparse
import concurrent.futures
import logging
import signal
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path

import httpx

from mailalert import __version__
from mailalert.channels import HttpChannel, build_channels
from mailalert.config import ConfigError, ServerConfig, get_config_path
from mailalert.dispatch import DeliveryOutcome, Dispatcher, RetryPolicy
from mailalert.hook import (
    HookAuthenticator,
    InboundRequest,
    ParseError,
    RecipientAllowList,
    extract_metadata,
)
from mailalert.logging import configure_logging, mask_token
from mailalert.server import WebhookServer


logger = logging.getLogger(__name__)


class NotificationService:
    """Mail alert relay service."""

    def __init__(
        self,
        config: ServerConfig,
        *,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
        channels: list[HttpChannel] | None = None,
    ) -> None:
        """Initialize service.

        Args:
            config: Service configuration.
            transport: Optional httpx transport for channel adapters.
            sleep: Blocking sleep used for retry backoff.
            channels: Channel adapters.  Built from ``config`` if omitted.
        """
        self.config = config
        self.authenticator = HookAuthenticator(config.auth_token)
        self.allow_list = RecipientAllowList(config.allowed_recipients)

        if channels is None:
            channels = build_channels(config, transport=transport)
        self.dispatcher = Dispatcher(
            channels,
            RetryPolicy.from_config(config.delivery),
            max_workers=config.delivery.max_workers,
            sleep=sleep,
        )
        self.server = WebhookServer(
            self.submit,
            self.authenticator,
            host=config.host,
            port=config.port,
        )

        self._executor_pool = ThreadPoolExecutor(
            max_workers=config.delivery.max_workers,
            thread_name_prefix="HookWorker",
        )
        self._pending_futures: set[Future[list[Future[DeliveryOutcome]]]] = (
            set()
        )
        self._futures_lock = threading.Lock()
        self._shutdown_event = threading.Event()
        self._stopped = False

    def start(self, block: bool = True) -> None:
        """Start the service.

        Args:
            block: Wait in the calling thread until ``stop`` is called.
        """
        logger.info("mailalert %s starting...", __version__)
        self._log_banner()
        self.server.start()

        if not block:
            return

        try:
            while not self._shutdown_event.wait(timeout=1.0):
                pass
        except KeyboardInterrupt:
            logger.info("Interrupted by user")

    def _log_banner(self) -> None:
        config = self.config
        if self.authenticator.enabled:
            logger.info(
                "Authentication: enabled (token: %s)",
                mask_token(config.auth_token),
            )
        else:
            logger.warning("Authentication: disabled")

        logger.info(
            "Channels: %s",
            ", ".join(c.name for c in self.dispatcher.channels) or "(none)",
        )
        if config.enabled_channels is None:
            logger.info("Channel filter: all configured channels")
        else:
            logger.info(
                "Channel filter: %s", ", ".join(sorted(config.enabled_channels))
            )

        if self.allow_list.allowed:
            logger.info(
                "Allowed recipients: %s",
                ", ".join(sorted(self.allow_list.allowed)),
            )
        else:
            logger.info("Allowed recipients: all")

        logger.info(
            "Delivery: %d attempts, %.1fs backoff, %.1fs timeout",
            config.delivery.max_attempts,
            config.delivery.backoff_seconds,
            config.delivery.http_timeout_seconds,
        )

    def stop(self) -> None:
        """Stop the service gracefully.

        Stops accepting requests, then waits for queued hook requests and
        in-flight deliveries up to the configured shutdown timeout.
        """
        if self._stopped:
            return
        self._stopped = True

        logger.info("Stopping mailalert...")
        self._shutdown_event.set()
        self.server.stop()

        timeout = self.config.delivery.shutdown_timeout_seconds
        with self._futures_lock:
            futures_copy = set(self._pending_futures)

        if futures_copy:
            logger.info(
                "Waiting for %d pending requests (timeout: %ss)...",
                len(futures_copy),
                timeout,
            )
            _, not_done = concurrent.futures.wait(futures_copy, timeout=timeout)
            if not_done:
                logger.warning(
                    "%d requests did not complete within timeout",
                    len(not_done),
                )
                for future in not_done:
                    future.cancel()

        self._executor_pool.shutdown(wait=False, cancel_futures=True)
        self.dispatcher.shutdown(timeout)
        logger.info("Service stopped")

    def submit(self, body: bytes) -> bool:
        """Queue a hook request body for processing.

        Called from the webhook handler.  Returns immediately.

        Args:
            body: Raw request body.

        Returns:
            True if queued, False if the service is shutting down.
        """
        with self._futures_lock:
            if self._stopped:
                logger.warning("Service stopping, dropping hook request")
                return False
            future = self._executor_pool.submit(self._process_payload, body)
            self._pending_futures.add(future)

        future.add_done_callback(self._on_future_complete)
        return True

    def _on_future_complete(
        self, future: Future[list[Future[DeliveryOutcome]]]
    ) -> None:
        """Callback when a hook request completes."""
        with self._futures_lock:
            self._pending_futures.discard(future)

        try:
            exception = future.exception()
            if exception:
                logger.error("Hook processing failed: %s", exception)
        except concurrent.futures.CancelledError:
            logger.debug("Hook processing was cancelled")

    def _process_payload(self, body: bytes) -> list[Future[DeliveryOutcome]]:
        """Parse a hook body and dispatch the alert.

        Args:
            body: Raw request body.

        Returns:
            Delivery futures, one per channel.  Empty if the request was
            malformed or filtered out.
        """
        try:
            request = InboundRequest.from_json(body)
        except ParseError as e:
            logger.error("Failed to parse hook request: %s", e)
            return []

        if not self.allow_list.is_allowed(request.envelope_to):
            logger.info(
                "Skipped email for non-whitelisted recipient: %s",
                ", ".join(request.envelope_to) or "(none)",
            )
            return []

        metadata = extract_metadata(request)
        logger.info(
            "Alert (queue=%s): from=%s subject=%s",
            request.queue_id,
            metadata.sender,
            metadata.subject,
        )
        return self.dispatcher.dispatch(metadata)


def _load_config(config_path: Path | None) -> ServerConfig:
    """Load configuration from YAML if available, else from the environment.

    An explicit ``--config`` path must exist.  Without one, the default
    YAML file is used when present.
    """
    if config_path is not None:
        return ServerConfig.from_yaml(config_path=config_path)
    if get_config_path().exists():
        return ServerConfig.from_yaml()
    return ServerConfig.from_env()


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Args:
        argv: Command-line arguments. If None, uses sys.argv[1:].

    Returns:
        Exit code (0=success, 1=config error, 2=startup, 3=runtime error).
    """
    parser = argparse.ArgumentParser(
        prog="mailalert",
        description="Mail alert relay",
        epilog=(
            "Receives MTA hook callbacks and forwards new-mail alerts to "
            "Telegram, ntfy and DingTalk."
        ),
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="PATH",
        help=(
            "Path to mailalert.yaml config file"
            " (default: ~/.config/mailalert/mailalert.yaml, falling back to"
            " environment variables)"
        ),
    )
    args = parser.parse_args(argv)

    configure_logging(
        level=logging.DEBUG if args.debug else logging.INFO,
        add_secret_filter=True,
    )

    try:
        config = _load_config(args.config)
    except (ConfigError, ValueError) as e:
        logger.critical("Configuration error: %s", e)
        return 1

    try:
        service = NotificationService(config)
    except Exception as e:
        logger.exception("Failed to initialize service: %s", e)
        return 2

    def shutdown_handler(signum: int, frame: object) -> None:
        """Handle shutdown signals."""
        logger.info("Received signal %d, initiating shutdown...", signum)
        service.stop()

    signal.signal(signal.SIGINT, shutdown_handler)
    signal.signal(signal.SIGTERM, shutdown_handler)

    try:
        service.start()
        return 0
    except OSError as e:
        logger.critical("Failed to start webhook server: %s", e)
        return 2
    except Exception as e:
        logger.exception("Fatal runtime error: %s", e)
        return 3
    finally:
        service.stop()
