# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Notification channel adapters.

- Shared protocol, errors and HTTP helper (base)
- Telegram Bot API (telegram)
- ntfy push (ntfy)
- DingTalk group robot (dingtalk)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from mailalert.channels.base import (
    ALERT_TEMPLATE,
    DeliveryError,
    HttpChannel,
    NotificationChannel,
    format_alert,
)
from mailalert.channels.dingtalk import DingTalkChannel, compute_signature
from mailalert.channels.ntfy import NtfyChannel, encode_header_value
from mailalert.channels.telegram import TelegramChannel


if TYPE_CHECKING:
    from mailalert.config import ServerConfig


logger = logging.getLogger(__name__)

#: Adapter classes in dispatch order.
CHANNEL_TYPES: tuple[type[HttpChannel], ...] = (
    TelegramChannel,
    NtfyChannel,
    DingTalkChannel,
)


def build_channels(
    config: ServerConfig,
    transport: httpx.BaseTransport | None = None,
) -> list[HttpChannel]:
    """Instantiate the enabled channel adapters.

    Args:
        config: Service configuration.
        transport: Optional httpx transport shared by all adapters.

    Returns:
        Adapters in fixed order (telegram, ntfy, dingtalk).
    """
    channels: list[HttpChannel] = []
    for channel_type in CHANNEL_TYPES:
        if not channel_type.is_enabled(config):
            continue
        channel = channel_type.from_config(config, transport=transport)
        logger.debug("Enabled channel: %s", channel.name)
        channels.append(channel)
    return channels


__all__ = [
    # base
    "ALERT_TEMPLATE",
    "DeliveryError",
    "HttpChannel",
    "NotificationChannel",
    "format_alert",
    # dingtalk
    "DingTalkChannel",
    "compute_signature",
    # ntfy
    "NtfyChannel",
    "encode_header_value",
    # telegram
    "TelegramChannel",
    # registry
    "CHANNEL_TYPES",
    "build_channels",
]
