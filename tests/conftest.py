# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared pytest fixtures used across multiple test packages."""

from collections.abc import Callable, Iterator
from typing import Any
from unittest.mock import patch

import httpx
import pytest

from mailalert.config import (
    DeliveryConfig,
    DingTalkConfig,
    NtfyConfig,
    ServerConfig,
    TelegramConfig,
)
from mailalert.logging import SecretFilter


ENV_VARS = (
    "AUTH_TOKEN",
    "BIND_ADDR",
    "ALLOWED_RCPTS",
    "ENABLED_CHANNELS",
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_CHAT_ID",
    "NTFY_SERVER",
    "NTFY_TOPIC",
    "NTFY_TOKEN",
    "DINGTALK_WEBHOOK",
    "DINGTALK_SECRET",
    "NOTIFY_MAX_ATTEMPTS",
    "NOTIFY_BACKOFF_MS",
    "NOTIFY_HTTP_TIMEOUT",
    "NOTIFY_MAX_WORKERS",
    "NOTIFY_SHUTDOWN_TIMEOUT",
)


@pytest.fixture(autouse=True)
def _reset_secret_filter() -> Iterator[None]:
    """Keep registered secrets from leaking between tests."""
    SecretFilter.clear_secrets()
    yield
    SecretFilter.clear_secrets()


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[pytest.MonkeyPatch]:
    """Remove service env vars and skip ``.env`` loading."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    with patch("mailalert.config.load_dotenv_once"):
        yield monkeypatch


@pytest.fixture
def make_config() -> Callable[..., ServerConfig]:
    """Build a ServerConfig with only ntfy configured unless overridden."""

    def _make(**overrides: Any) -> ServerConfig:
        values: dict[str, Any] = {
            "ntfy": NtfyConfig(server="https://ntfy.example", topic="mail"),
            "delivery": DeliveryConfig(max_workers=2, shutdown_timeout_seconds=5),
        }
        values.update(overrides)
        return ServerConfig(**values)

    return _make


@pytest.fixture
def all_channels_config(
    make_config: Callable[..., ServerConfig],
) -> ServerConfig:
    """Config with all three channels configured."""
    return make_config(
        telegram=TelegramConfig(bot_token="123456:bot-token", chat_id="42"),
        dingtalk=DingTalkConfig(
            webhook="https://oapi.dingtalk.example/robot/send?access_token=abc",
            secret="SECdingtalk",
        ),
    )


def _ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"errcode": 0, "errmsg": "ok"})


class RecordingTransport(httpx.MockTransport):
    """Mock transport that records every request it handles."""

    def __init__(
        self,
        handler: Callable[[httpx.Request], httpx.Response] | None = None,
    ) -> None:
        self.requests: list[httpx.Request] = []
        self._respond = handler or _ok
        super().__init__(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        request.read()
        self.requests.append(request)
        return self._respond(request)


@pytest.fixture
def make_transport() -> Callable[..., RecordingTransport]:
    """Factory for recording transports with an optional handler."""
    return RecordingTransport


@pytest.fixture
def transport() -> RecordingTransport:
    """Transport answering 200 to everything."""
    return RecordingTransport()
