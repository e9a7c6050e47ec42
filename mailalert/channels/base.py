# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Notification channel protocol and shared HTTP plumbing.

Every channel turns one alert (sender, recipients, subject) into exactly
one HTTP POST.  ``send`` returns normally on success and raises
``DeliveryError`` on any failure; retrying is the dispatcher's job.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, ClassVar, Protocol, Self

import httpx


if TYPE_CHECKING:
    from mailalert.config import ServerConfig


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 5.0

ALERT_TEMPLATE = "📧 New Email Received\nFrom: {sender}\nTo: {to}\nSubject: {subject}"


def format_alert(sender: str, to: str, subject: str) -> str:
    """Render the alert text used by chat-style channels."""
    return ALERT_TEMPLATE.format(sender=sender, to=to, subject=subject)


class DeliveryError(Exception):
    """Raised when a channel fails to deliver a notification.

    Attributes:
        channel: Identifier of the failing channel.
        reason: Human-readable failure reason.
    """

    def __init__(self, reason: str, *, channel: str = "") -> None:
        self.channel = channel
        self.reason = reason
        super().__init__(f"{channel}: {reason}" if channel else reason)


class NotificationChannel(Protocol):
    """Interface shared by all channel adapters."""

    @property
    def channel_id(self) -> str:
        """Return the canonical channel identifier (e.g. ``"ntfy"``)."""
        ...

    @property
    def name(self) -> str:
        """Return the display name used in logs."""
        ...

    def send(self, sender: str, to: str, subject: str) -> None:
        """Deliver one alert.

        Raises:
            DeliveryError: If delivery failed.
        """
        ...


class HttpChannel:
    """Base for channels that deliver with a single HTTP POST.

    Subclasses set ``channel_id`` and ``name`` and implement ``send`` and
    ``from_config``.

    Attributes:
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (tests use
            ``httpx.MockTransport``).
    """

    channel_id: ClassVar[str]
    name: ClassVar[str]

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def is_enabled(cls, config: ServerConfig) -> bool:
        """Whether this channel is configured and selected."""
        return config.is_channel_enabled(cls.channel_id)

    @classmethod
    def from_config(
        cls,
        config: ServerConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> Self:
        """Build the adapter from the service configuration."""
        raise NotImplementedError

    def _post(self, url: str, **kwargs: Any) -> httpx.Response:
        """POST to the provider and check the HTTP status.

        Args:
            url: Request URL.
            **kwargs: Passed to ``httpx.Client.post``.

        Returns:
            The successful (2xx) response.

        Raises:
            DeliveryError: On transport errors and non-2xx responses.
        """
        try:
            with httpx.Client(
                timeout=self.timeout, transport=self.transport
            ) as client:
                response = client.post(url, **kwargs)
        except httpx.HTTPError as e:
            raise DeliveryError(
                f"request failed: {type(e).__name__}: {e}",
                channel=self.channel_id,
            ) from e

        if not response.is_success:
            logger.debug(
                "%s response body: %s", self.name, response.text[:200]
            )
            raise DeliveryError(
                f"status {response.status_code} {response.reason_phrase}",
                channel=self.channel_id,
            )
        return response
