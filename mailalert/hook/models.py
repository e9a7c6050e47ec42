# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""MTA hook request model.

The MTA posts one JSON document per SMTP transaction::

    {
      "context": {"stage": "DATA", "queue": {"id": "..."}},
      "envelope": {
        "from": {"address": "john@example.com"},
        "to": [{"address": "bill@example.com"}, ...]
      },
      "message": {
        "headers": [["From", "John <john@example.com>"], ...],
        "contents": "..."
      }
    }

Unknown fields are ignored and missing sections default to empty.  Only
a body that is not a JSON object, or fields of the wrong JSON type, are
rejected.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any


class ParseError(Exception):
    """Raised when a hook request body cannot be parsed."""


@dataclass(frozen=True)
class InboundRequest:
    """Parsed MTA hook request.

    Attributes:
        stage: SMTP stage the hook fired at (informational only).
        queue_id: Queue identifier for log correlation, if provided.
        envelope_from: SMTP ``MAIL FROM`` address.
        envelope_to: SMTP ``RCPT TO`` addresses in the order given.
            Entries without an address are skipped.
        headers: Message headers as ``(name, raw_value)`` pairs in
            message order.  Names may repeat.
        contents: Raw message body.  Never inspected.
    """

    stage: str = ""
    queue_id: str | None = None
    envelope_from: str = ""
    envelope_to: tuple[str, ...] = ()
    headers: tuple[tuple[str, str], ...] = ()
    contents: str = ""

    @classmethod
    def from_json(cls, body: bytes | str) -> InboundRequest:
        """Parse a hook request body.

        Args:
            body: Raw request body.

        Returns:
            Parsed request.

        Raises:
            ParseError: If the body is not valid JSON or has an invalid
                structure.
        """
        try:
            data = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ParseError(f"Invalid JSON: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: object) -> InboundRequest:
        """Build a request from decoded JSON.

        Raises:
            ParseError: If the structure is invalid.
        """
        if not isinstance(data, dict):
            raise ParseError("Request body must be a JSON object")
        root = data
        context = _mapping(root.get("context"), "context")
        envelope = _mapping(root.get("envelope"), "envelope")
        message = _mapping(root.get("message"), "message")
        queue = _mapping(context.get("queue"), "context.queue")

        queue_id = _string(queue.get("id"), "context.queue.id")

        return cls(
            stage=_string(context.get("stage"), "context.stage") or "",
            queue_id=queue_id or None,
            envelope_from=_address(envelope.get("from"), "envelope.from"),
            envelope_to=tuple(
                address
                for i, item in enumerate(_list(envelope.get("to"), "envelope.to"))
                if (address := _address(item, f"envelope.to[{i}]"))
            ),
            headers=_headers(message.get("headers")),
            contents=_string(message.get("contents"), "message.contents") or "",
        )


def _mapping(value: object, path: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ParseError(f"'{path}' must be an object")
    return value


def _list(value: object, path: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ParseError(f"'{path}' must be an array")
    return value


def _string(value: object, path: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ParseError(f"'{path}' must be a string")
    return value


def _address(value: object, path: str) -> str:
    """Extract ``address`` from an ``{"address": ...}`` object."""
    return _string(_mapping(value, path).get("address"), f"{path}.address") or ""


def _headers(value: object) -> tuple[tuple[str, str], ...]:
    """Convert ``[[name, value], ...]`` into pairs.

    Entries that are not arrays of at least two strings are skipped.
    """
    headers: list[tuple[str, str]] = []
    for entry in _list(value, "message.headers"):
        if (
            isinstance(entry, list)
            and len(entry) >= 2
            and isinstance(entry[0], str)
            and isinstance(entry[1], str)
        ):
            headers.append((entry[0], entry[1]))
    return tuple(headers)
