# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""DingTalk custom robot channel.

Robots with "additional signature" security need ``timestamp`` and
``sign`` query parameters on every request::

    string_to_sign = f"{timestamp}\\n{secret}"
    sign = urlencode(base64(hmac_sha256(key=secret, msg=string_to_sign)))

The timestamp is in milliseconds and must be within an hour of the
robot server's clock.

DingTalk reports most failures (bad signature, rate limit, keyword
mismatch) with HTTP 200 and a non-zero ``errcode`` in the JSON body, so
both the status and the body are checked.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import time
from typing import TYPE_CHECKING, Self

import httpx

from mailalert.channels.base import DeliveryError, HttpChannel, format_alert
from mailalert.config import CHANNEL_DINGTALK


if TYPE_CHECKING:
    from mailalert.config import ServerConfig


logger = logging.getLogger(__name__)


def compute_signature(secret: str, timestamp_ms: int) -> str:
    """Compute the robot request signature.

    Args:
        secret: Robot signing secret.
        timestamp_ms: Request timestamp in milliseconds.

    Returns:
        Base64-encoded HMAC-SHA256 signature.  It is URL-escaped when
        added to the query string.
    """
    string_to_sign = f"{timestamp_ms}\n{secret}"
    digest = hmac.new(
        secret.encode("utf-8"),
        string_to_sign.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def _parse_errcode(value: object) -> int:
    """Read the robot API's ``errcode``, a number or a numeric string.

    Raises:
        ValueError: If the value is not an integer code.
    """
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValueError(f"invalid errcode {value!r}")
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"invalid errcode {value!r}") from e


class DingTalkChannel(HttpChannel):
    """Posts alerts to a DingTalk group robot."""

    channel_id = CHANNEL_DINGTALK
    name = "DingTalk"

    def __init__(
        self,
        webhook: str,
        *,
        secret: str = "",
        timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(timeout=timeout, transport=transport)
        self.webhook = webhook
        self.secret = secret

    @classmethod
    def from_config(
        cls,
        config: ServerConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> Self:
        return cls(
            config.dingtalk.webhook,
            secret=config.dingtalk.secret,
            timeout=config.delivery.http_timeout_seconds,
            transport=transport,
        )

    def signed_params(self, timestamp_ms: int | None = None) -> dict[str, str]:
        """Build the signature query parameters.

        Args:
            timestamp_ms: Timestamp to sign.  Defaults to now.

        Returns:
            ``timestamp`` and ``sign`` parameters, or an empty dict when
            no secret is configured.  The webhook's own query parameters
            (``access_token``) are kept by httpx when these are merged in.
        """
        if not self.secret:
            return {}
        if timestamp_ms is None:
            timestamp_ms = int(time.time() * 1000)
        return {
            "timestamp": str(timestamp_ms),
            "sign": compute_signature(self.secret, timestamp_ms),
        }

    def send(self, sender: str, to: str, subject: str) -> None:
        """Send the alert as a text message.

        Raises:
            DeliveryError: On transport errors, non-2xx responses, an
                unreadable response body or a non-zero ``errcode``.
        """
        params = self.signed_params()
        logger.debug(
            "Sending DingTalk alert (%s)", "signed" if params else "unsigned"
        )
        response = self._post(
            self.webhook,
            params=params,
            json={
                "msgtype": "text",
                "text": {"content": format_alert(sender, to, subject)},
            },
        )

        try:
            result = response.json()
        except ValueError as e:
            raise DeliveryError(
                f"invalid response body: {e}", channel=self.channel_id
            ) from e

        if not isinstance(result, dict):
            raise DeliveryError(
                "invalid response body: expected a JSON object",
                channel=self.channel_id,
            )

        try:
            errcode = _parse_errcode(result.get("errcode", 0))
        except ValueError as e:
            raise DeliveryError(
                f"invalid response body: {e}", channel=self.channel_id
            ) from e

        if errcode != 0:
            raise DeliveryError(
                f"error {errcode}: {result.get('errmsg', '')}",
                channel=self.channel_id,
            )
