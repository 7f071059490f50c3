"""Decode quoted-printable notification bodies into plain text."""
import logging
import quopri
import re

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def escape_text(text: str) -> str:
    """Quoted-printable form of every UTF-8 byte in text (e.g. 年 -> =E5=B9=B4)."""
    return "".join(f"={byte:02X}" for byte in text.encode("utf-8"))


def decode_escapes(raw: str) -> str:
    """Resolve =XX escapes and soft line breaks. Raises on undecodable bytes."""
    decoded = quopri.decodestring(raw.encode("utf-8"))
    return decoded.decode("utf-8")


def normalize_body(raw: str | None) -> str:
    """
    Turn a raw message body into single-line plain text.

    Escapes are resolved, whitespace runs collapse to one space and the result
    is trimmed. If decoding fails the original input is returned unchanged so
    the escaped-form extractors still get a chance at it.
    """
    if not raw:
        return ""
    try:
        decoded = decode_escapes(raw)
    except (UnicodeError, ValueError) as e:
        logger.debug(f"Quoted-printable decode failed, keeping raw body: {e}")
        return raw
    return _WHITESPACE.sub(" ", decoded).strip()


def normalize_lines(raw: str | None) -> str:
    """Like normalize_body, but keeps one line per non-blank line of the body."""
    if not raw:
        return ""
    try:
        decoded = decode_escapes(raw)
    except (UnicodeError, ValueError):
        return raw
    lines = (_WHITESPACE.sub(" ", line).strip() for line in decoded.splitlines())
    return "\n".join(line for line in lines if line)
