# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""ntfy push channel.

The message body is plain text with sender and recipients; the subject
travels in the ``Title`` header.  HTTP header values are ASCII on the
wire, so a non-ASCII title is sent as an RFC 2047 encoded-word, which
ntfy decodes.
"""

from __future__ import annotations

import base64
import logging
from typing import TYPE_CHECKING, Self

import httpx

from mailalert.channels.base import HttpChannel
from mailalert.config import CHANNEL_NTFY, DEFAULT_NTFY_SERVER


if TYPE_CHECKING:
    from mailalert.config import ServerConfig


logger = logging.getLogger(__name__)

PRIORITY = "default"
TAGS = "email,incoming"


def encode_header_value(value: str) -> str:
    """Make a header value safe to send.

    Line breaks are flattened to spaces.  Non-ASCII values are wrapped in
    a single UTF-8 ``B`` encoded-word.

    Args:
        value: Header value.

    Returns:
        ASCII header value.
    """
    flat = value.replace("\r", " ").replace("\n", " ")
    if flat.isascii():
        return flat
    encoded = base64.b64encode(flat.encode("utf-8")).decode("ascii")
    return f"=?UTF-8?B?{encoded}?="


class NtfyChannel(HttpChannel):
    """Publishes alerts to an ntfy topic."""

    channel_id = CHANNEL_NTFY
    name = "ntfy"

    def __init__(
        self,
        topic: str,
        *,
        server: str = DEFAULT_NTFY_SERVER,
        token: str = "",
        timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(timeout=timeout, transport=transport)
        self.server = server.rstrip("/")
        self.topic = topic
        self.token = token

    @classmethod
    def from_config(
        cls,
        config: ServerConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> Self:
        return cls(
            config.ntfy.topic,
            server=config.ntfy.server,
            token=config.ntfy.token,
            timeout=config.delivery.http_timeout_seconds,
            transport=transport,
        )

    @property
    def endpoint(self) -> str:
        return f"{self.server}/{self.topic}"

    def send(self, sender: str, to: str, subject: str) -> None:
        """Publish the alert.

        Raises:
            DeliveryError: On transport errors and non-2xx responses.
        """
        headers = {
            "Title": encode_header_value(subject),
            "Priority": PRIORITY,
            "Tags": TAGS,
            "Content-Type": "text/plain; charset=utf-8",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        logger.debug("Publishing ntfy alert to %s", self.endpoint)
        self._post(
            self.endpoint,
            content=f"From: {sender}\nTo: {to}".encode(),
            headers=headers,
        )
