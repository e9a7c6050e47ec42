# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Recipient allow-list.

Only mail addressed to one of the listed mailboxes raises an alert.  The
check runs against the SMTP envelope recipients, not the ``To`` header:
the header may hold display names, several comma-joined addresses, or
nothing at all for Bcc deliveries.
"""

import logging
from collections.abc import Iterable


logger = logging.getLogger(__name__)


class RecipientAllowList:
    """Decides whether a message's envelope recipients warrant an alert.

    Matching is exact and case-insensitive; there is no domain
    wildcarding.  An empty allow-list admits everything.

    Attributes:
        allowed: Lower-cased, trimmed addresses.
    """

    def __init__(self, allowed: Iterable[str] = ()) -> None:
        """Initialize allow-list.

        Args:
            allowed: Allowed recipient addresses.  Normalized here, so
                callers may pass them as configured.
        """
        self.allowed = frozenset(
            addr.strip().lower() for addr in allowed if addr.strip()
        )
        logger.debug(
            "Initialized recipient allow-list with %d entries",
            len(self.allowed),
        )

    def is_allowed(self, envelope_recipients: Iterable[str]) -> bool:
        """Check the envelope recipients against the allow-list.

        Args:
            envelope_recipients: ``RCPT TO`` addresses.

        Returns:
            True if the allow-list is empty or any recipient is on it.
        """
        if not self.allowed:
            return True

        for recipient in envelope_recipients:
            addr = recipient.strip().lower()
            if not addr:
                continue
            if addr in self.allowed:
                logger.debug("Recipient %s is on the allow-list", addr)
                return True

        logger.debug("No envelope recipient is on the allow-list")
        return False
