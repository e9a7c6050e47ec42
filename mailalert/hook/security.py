# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Hook request authentication.

The MTA can be configured to send a shared token either as a standard
``Authorization: Bearer <token>`` header or in ``X-Notify-Auth``.  The
token is compared in constant time.

Authentication only decides whether a request is processed.  The hook
response is the same either way, because it answers the MTA's
accept/reject question and must not bounce mail.
"""

import hmac
import logging
from collections.abc import Mapping


logger = logging.getLogger(__name__)

AUTH_HEADER = "Authorization"
NOTIFY_AUTH_HEADER = "X-Notify-Auth"

_BEARER_PREFIX = "bearer "


def _extract_token(headers: Mapping[str, str]) -> str | None:
    """Pull the presented token out of the request headers.

    ``X-Notify-Auth`` wins when both headers are present.  The
    ``Bearer`` scheme is matched case-insensitively and is optional.
    """
    notify = headers.get(NOTIFY_AUTH_HEADER)
    if notify is not None:
        return notify.strip()

    authorization = headers.get(AUTH_HEADER)
    if authorization is None:
        return None

    token = authorization.strip()
    if token[: len(_BEARER_PREFIX)].lower() == _BEARER_PREFIX:
        token = token[len(_BEARER_PREFIX) :].strip()
    return token


class HookAuthenticator:
    """Checks the shared token on incoming hook requests.

    Attributes:
        token: Expected token.  Empty disables authentication.
    """

    def __init__(self, token: str = "") -> None:
        self.token = token

    @property
    def enabled(self) -> bool:
        """Whether requests must present a token."""
        return bool(self.token)

    def authenticate(
        self, headers: Mapping[str, str], remote_addr: str | None = None
    ) -> bool:
        """Check whether a request presents the expected token.

        Args:
            headers: Request headers (case-insensitive mapping).
            remote_addr: Client address, for logging.

        Returns:
            True if authentication is disabled or the token matches.
        """
        if not self.enabled:
            return True

        presented = _extract_token(headers)
        if presented is not None and hmac.compare_digest(
            presented.encode(), self.token.encode()
        ):
            return True

        logger.warning("Authentication failed, source: %s", remote_addr)
        return False
