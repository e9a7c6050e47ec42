# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Telegram Bot API channel."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Self

import httpx

from mailalert.channels.base import HttpChannel, format_alert
from mailalert.config import CHANNEL_TELEGRAM


if TYPE_CHECKING:
    from mailalert.config import ServerConfig


logger = logging.getLogger(__name__)

_API_BASE = "https://api.telegram.org"


class TelegramChannel(HttpChannel):
    """Posts alerts to a chat through ``sendMessage``.

    The bot token is part of the request path, so it is registered for
    log redaction when the configuration is loaded.
    """

    channel_id = CHANNEL_TELEGRAM
    name = "Telegram"

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        *,
        api_base: str = _API_BASE,
        timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(timeout=timeout, transport=transport)
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.api_base = api_base.rstrip("/")

    @classmethod
    def from_config(
        cls,
        config: ServerConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> Self:
        return cls(
            config.telegram.bot_token,
            config.telegram.chat_id,
            timeout=config.delivery.http_timeout_seconds,
            transport=transport,
        )

    @property
    def endpoint(self) -> str:
        return f"{self.api_base}/bot{self.bot_token}/sendMessage"

    def send(self, sender: str, to: str, subject: str) -> None:
        """Send the alert as a text message.

        Raises:
            DeliveryError: On transport errors and non-2xx responses.
        """
        logger.debug("Sending Telegram alert to chat %s", self.chat_id)
        self._post(
            self.endpoint,
            json={
                "chat_id": self.chat_id,
                "text": format_alert(sender, to, subject),
            },
        )
