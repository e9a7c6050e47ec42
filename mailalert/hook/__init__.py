# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""MTA hook handling.

- Request model and parsing (models)
- Alert metadata extraction (metadata)
- Recipient allow-list (recipients)
- Shared-token authentication (security)
"""

from mailalert.hook.metadata import (
    DEFAULT_SUBJECT,
    Metadata,
    extract_metadata,
    find_header,
)
from mailalert.hook.models import InboundRequest, ParseError
from mailalert.hook.recipients import RecipientAllowList
from mailalert.hook.security import HookAuthenticator


__all__ = [
    # metadata
    "DEFAULT_SUBJECT",
    "Metadata",
    "extract_metadata",
    "find_header",
    # models
    "InboundRequest",
    "ParseError",
    # recipients
    "RecipientAllowList",
    # security
    "HookAuthenticator",
]
