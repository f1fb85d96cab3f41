"""Single-byte-safe text sanitization for outbound platform requests.

The commerce platform rejects request bodies and headers that carry
characters outside the Latin-1 range (the transport encodes them as a
ByteString). Everything that leaves through the admin gateway passes
through ``sanitize`` first, and the serialized body gets a final
``enforce_single_byte`` pass.
"""

import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

Sanitizer = Callable[[str], str]

# Highest code point that survives the transport unchanged
MAX_SINGLE_BYTE = 0xFF

UNICODE_TO_ASCII: dict[str, str] = {
    # Dashes
    "\u2010": "-",
    "\u2011": "-",
    "\u2012": "-",
    "\u2013": "-",
    "\u2014": "-",
    "\u2015": "-",
    "\u2212": "-",
    # Quotes
    "\u2018": "'",
    "\u2019": "'",
    "\u201a": "'",
    "\u201b": "'",
    "\u2032": "'",
    "\u201c": '"',
    "\u201d": '"',
    "\u201e": '"',
    "\u201f": '"',
    "\u2033": '"',
    "\u00ab": '"',
    "\u00bb": '"',
    "\u2039": "'",
    "\u203a": "'",
    # Punctuation
    "\u2026": "...",
    "\u2022": "*",
    "\u00b7": "*",
    "\u2027": "*",
    # Spaces
    "\u00a0": " ",
    "\u2000": " ",
    "\u2001": " ",
    "\u2002": " ",
    "\u2003": " ",
    "\u2004": " ",
    "\u2005": " ",
    "\u2006": " ",
    "\u2007": " ",
    "\u2008": " ",
    "\u2009": " ",
    "\u200a": " ",
    "\u202f": " ",
    "\u3000": " ",
    # Zero-width
    "\u200b": "",
    "\u200c": "",
    "\u200d": "",
    "\u2060": "",
    "\ufeff": "",
}

_TRANSLATION = str.maketrans(UNICODE_TO_ASCII)


def sanitize(text: str) -> str:
    """Map typographic characters to single-byte equivalents.

    Known punctuation is replaced by its ASCII counterpart; any other
    character above U+00FF becomes a space.

    Args:
        text: Arbitrary input text.

    Returns:
        Text containing only code points <= U+00FF.
    """
    if not text:
        return text
    translated = text.translate(_TRANSLATION)
    return "".join(ch if ord(ch) <= MAX_SINGLE_BYTE else " " for ch in translated)


def sanitize_payload(value: Any, sanitizer: Sanitizer = sanitize) -> Any:
    """Recursively sanitize every string value and mapping key.

    Args:
        value: JSON-like structure (dict, list, scalar).
        sanitizer: Text sanitizer to apply.

    Returns:
        A new structure with the same shape and sanitized strings.
    """
    if isinstance(value, str):
        return sanitizer(value)
    if isinstance(value, dict):
        return {
            (sanitizer(k) if isinstance(k, str) else k): sanitize_payload(v, sanitizer)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [sanitize_payload(item, sanitizer) for item in value]
    return value


def enforce_single_byte(text: str) -> tuple[str, int]:
    """Replace any character left above U+00FF after serialization.

    En and em dashes become ``-``; everything else becomes a space.

    Args:
        text: Serialized payload.

    Returns:
        Tuple of (clean text, number of replaced characters).
    """
    replaced = 0
    out: list[str] = []
    for ch in text:
        if ord(ch) > MAX_SINGLE_BYTE:
            replaced += 1
            out.append("-" if ch in ("\u2013", "\u2014") else " ")
        else:
            out.append(ch)
    if replaced:
        logger.warning("Replaced %d non single-byte characters in serialized payload", replaced)
    return "".join(out), replaced


def normalize_header_value(value: str, sanitizer: Sanitizer = sanitize) -> str:
    """Sanitize a header value and keep printable ASCII only."""
    cleaned = sanitizer(value or "").strip()
    return "".join(ch for ch in cleaned if 0x20 <= ord(ch) < 0x7F)
