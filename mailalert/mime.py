# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Decoding of raw email header values for display.

MTA hooks hand over header values exactly as they appeared on the wire:
possibly folded across several lines and possibly containing RFC 2047
encoded-words (``=?UTF-8?Q?...?=``, ``=?UTF-8?B?...?=``).

``email.header.decode_header`` is deliberately not used here.  It
converts through the declared charset, raises on unknown charsets and
re-inserts spaces between chunks, whereas alerts need a function that
never fails and keeps every byte of text it cannot decode.

The charset label of an encoded-word is accepted but not interpreted:
decoded bytes are read as UTF-8, which covers the overwhelming majority
of real-world mail.  Bytes that are not valid UTF-8 become U+FFFD.
"""

import base64
import binascii
import logging
import re


logger = logging.getLogger(__name__)

# A line break followed by one space or tab is a header continuation.
_FOLD_RE = re.compile(r"\r?\n[ \t]")

# =?charset?encoding?text?=  -- no whitespace or '?' inside the fields.
_ENCODED_WORD_RE = re.compile(r"=\?([^?\s]*)\?([^?\s]*)\?([^?\s]*)\?=")

_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")


class _InvalidEncodedWord(ValueError):
    """Encoded-word payload could not be decoded."""


def unfold(raw: str) -> str:
    """Join a folded header value into a single line.

    Each CRLF (or bare LF) immediately followed by a space or tab is
    replaced by a single space.  Other line breaks are left alone.

    Args:
        raw: Raw header value.

    Returns:
        Unfolded header value.
    """
    return _unfold_marking_folds(raw)[0]


def _unfold_marking_folds(raw: str) -> tuple[str, frozenset[int]]:
    """Unfold a header value and report where the folds were.

    Returns:
        Tuple of (unfolded value, offsets of the spaces that replaced a
        fold).
    """
    parts: list[str] = []
    folds: set[int] = set()
    length = 0
    last = 0
    for match in _FOLD_RE.finditer(raw):
        chunk = raw[last : match.start()]
        parts.append(chunk)
        length += len(chunk)
        folds.add(length)
        parts.append(" ")
        length += 1
        last = match.end()
    parts.append(raw[last:])
    return "".join(parts), frozenset(folds)


def _decode_q(text: str) -> bytes:
    """Decode the payload of a ``Q`` encoded-word.

    Raises:
        _InvalidEncodedWord: On ``=`` not followed by two hex digits.
    """
    out = bytearray()
    i = 0
    while i < len(text):
        c = text[i]
        if c == "_":
            out.append(0x20)
            i += 1
        elif c == "=":
            pair = text[i + 1 : i + 3]
            if len(pair) != 2 or not set(pair) <= _HEX_DIGITS:
                raise _InvalidEncodedWord(f"bad Q escape at offset {i}")
            out.append(int(pair, 16))
            i += 3
        else:
            out.extend(c.encode("utf-8"))
            i += 1
    return bytes(out)


def _decode_b(text: str) -> bytes:
    """Decode the payload of a ``B`` encoded-word.

    Raises:
        _InvalidEncodedWord: On malformed base64.
    """
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise _InvalidEncodedWord(str(e)) from e


def _decode_word(match: re.Match[str]) -> str | None:
    """Decode one encoded-word match.

    Returns:
        Decoded text, or None when the word must be passed through
        literally (unknown encoding or invalid payload).
    """
    encoding = match.group(2).upper()
    payload = match.group(3)
    try:
        if encoding == "Q":
            data = _decode_q(payload)
        elif encoding == "B":
            data = _decode_b(payload)
        else:
            logger.debug("Unsupported encoded-word encoding: %r", encoding)
            return None
    except _InvalidEncodedWord as e:
        logger.debug("Leaving malformed encoded-word as-is: %s", e)
        return None
    return data.decode("utf-8", errors="replace")


def _literal_run_end(text: str, start: int) -> int:
    """Find where a malformed encoded-word run ends.

    The run extends through the next ``?=``, but stops before another
    ``=?`` opening if that comes first so a following well-formed word
    can still be decoded.

    Args:
        text: Unfolded header value.
        start: Index of the ``=?`` that failed to match.

    Returns:
        Index just past the literal run.
    """
    close = text.find("?=", start + 2)
    reopen = text.find("=?", start + 2)
    if reopen != -1 and (close == -1 or reopen < close):
        return reopen
    if close == -1:
        return len(text)
    return close + 2


def decode_header_value(raw: str) -> str:
    """Decode a raw header value into human-readable text.

    Unfolds continuation lines, then substitutes every well-formed ``Q``
    or ``B`` encoded-word with its decoded text.  When two encoded-words
    are separated only by a fold, the space left by unfolding is dropped,
    so a run of text split across lines comes out in one piece.  Any other
    whitespace between words is kept.

    Never raises: anything that cannot be decoded is copied through
    unchanged, markers included.

    Args:
        raw: Raw header value as received from the MTA.

    Returns:
        Decoded header value.
    """
    if not raw:
        return ""

    text, folds = _unfold_marking_folds(raw)
    out: list[str] = []
    pos = 0
    after_word = False

    while pos < len(text):
        start = text.find("=?", pos)
        if start == -1:
            out.append(text[pos:])
            break

        gap = text[pos:start]
        match = _ENCODED_WORD_RE.match(text, start)
        decoded = _decode_word(match) if match else None

        if decoded is not None:
            if not (after_word and gap == " " and pos in folds):
                out.append(gap)
            out.append(decoded)
            after_word = True
            pos = match.end()  # type: ignore[union-attr]
            continue

        end = match.end() if match else _literal_run_end(text, start)
        out.append(gap)
        out.append(text[start:end])
        after_word = False
        pos = end

    return "".join(out)
