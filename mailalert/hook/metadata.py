# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Alert metadata extraction.

Header values are preferred over envelope addresses because they carry
display names.  Envelope addresses are plain SMTP addresses and are
never MIME-decoded.
"""

import logging
from dataclasses import dataclass

from mailalert.hook.models import InboundRequest
from mailalert.mime import decode_header_value


logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "(no subject)"


@dataclass(frozen=True)
class Metadata:
    """What an alert says about a message.

    Attributes:
        sender: Decoded ``From`` header, or the envelope sender.
        to: Decoded ``To`` header, or the envelope recipients joined
            with ``", "``, or empty.
        subject: Decoded ``Subject`` header, or ``DEFAULT_SUBJECT``.
    """

    sender: str
    to: str
    subject: str


def find_header(headers: tuple[tuple[str, str], ...], name: str) -> str | None:
    """Return the first header value whose name matches, ignoring case.

    Args:
        headers: Header pairs in message order.
        name: Header name to look up.

    Returns:
        Raw header value, or None if absent.
    """
    wanted = name.lower()
    for header_name, value in headers:
        if header_name.lower() == wanted:
            return value
    return None


def extract_metadata(request: InboundRequest) -> Metadata:
    """Build alert metadata from a hook request.

    Args:
        request: Parsed hook request.

    Returns:
        Metadata with decoded sender, recipients and subject.
    """
    raw_from = find_header(request.headers, "From")
    sender = (
        decode_header_value(raw_from)
        if raw_from is not None
        else request.envelope_from
    )

    raw_subject = find_header(request.headers, "Subject")
    subject = (
        decode_header_value(raw_subject)
        if raw_subject is not None
        else DEFAULT_SUBJECT
    )

    raw_to = find_header(request.headers, "To")
    if raw_to is not None:
        to = decode_header_value(raw_to)
    else:
        to = ", ".join(request.envelope_to)

    logger.debug(
        "Extracted metadata (queue=%s): from=%r to=%r subject=%r",
        request.queue_id,
        sender,
        to,
        subject,
    )
    return Metadata(sender=sender, to=to, subject=subject)
