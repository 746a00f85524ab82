from __future__ import annotations

import re
from typing import Any
from xml.sax.saxutils import escape as xml_escape
from xml.sax.saxutils import unescape as xml_unescape


REGEX_TIME = re.compile(r"^(([0-1][0-9]):([0-5][0-9]):([0-5][0-9]))$")

_QUOTE_ENTITIES = {'"': "&quot;", "'": "&apos;"}
_QUOTE_CHARACTERS = {value: key for key, value in _QUOTE_ENTITIES.items()}


def encode_html_entities(text: str) -> str:
    """Escape the five XML special characters. Not URL encoding."""

    if not isinstance(text, str):
        raise TypeError("html data is not a string")
    return xml_escape(text, _QUOTE_ENTITIES)


def decode_html_entities(text: str) -> str:
    if not isinstance(text, str):
        raise TypeError("html data is not a string")
    return xml_unescape(text, _QUOTE_CHARACTERS)


def hhmmss_to_msec(hhmmss: str) -> int:
    """Convert h:mm:ss (hours may exceed 24) to milliseconds.

    Malformed input raises ValueError.
    """

    hours, minutes, seconds = str(hhmmss).split(":")
    return (int(hours) * 3600 + int(minutes) * 60 + int(seconds)) * 1000


def msec_to_hhmmss(msec: int) -> str:
    total = max(0, int(msec)) // 1000
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def is_non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def safe_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
