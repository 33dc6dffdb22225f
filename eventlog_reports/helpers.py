"""String and timestamp helpers shared by the parser, sources and renderer."""

from __future__ import annotations

import re
from datetime import date, datetime, timezone

# C0 control characters except tab, LF and CR, plus the U+FFFF non-character
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_JUNK_CHAR = "\uffff"

_FRACTION_RE = re.compile(r"\.(\d+)")

# Culture-invariant fallbacks for SystemTime values that are not ISO-8601
_FALLBACK_TIME_FORMATS = (
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %I:%M:%S %p",
    "%Y/%m/%d %H:%M:%S",
)

_INVALID_XML_NAME_CHARS_RE = re.compile(r"[^\w.\-]")
_INVALID_FILE_CHARS_RE = re.compile(r'[\\/:*?"<>|]')

YMD_FORMAT = "%Y-%m-%d"
YMDHM_FORMAT = "%Y-%m-%d %H:%M"
YMDHMS_FORMAT = "%Y-%m-%d %H:%M:%S"


def strip_control_characters(text: str) -> str:
    """Remove characters that are not allowed in an XML document."""
    return _CONTROL_CHARS_RE.sub("", text).replace(_JUNK_CHAR, " ")


def local_name(tag) -> str:
    """'{namespace}Name' -> 'Name'. Comments and PIs have non-string tags."""
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1]


def fold(text: str) -> str:
    """Case-insensitive identity used for keys and column names."""
    return text.casefold()


def safe_int(value: str | None, default: int = -1) -> int:
    """Convert string to int, returning *default* for missing or invalid values."""
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def _pad_fraction(match: re.Match) -> str:
    return "." + (match.group(1) + "000000")[:6]


def parse_system_time(text: str | None) -> datetime | None:
    """Parse an event SystemTime attribute into an aware UTC datetime.

    Accepts ISO-8601 with a 'Z' or numeric offset and any number of
    fractional digits (Windows emits seven). Naive values are taken as UTC.
    Returns None when the value cannot be parsed.
    """
    if text is None or not text.strip():
        return None

    value = text.strip()
    if value[-1] in ("Z", "z"):
        value = value[:-1] + "+00:00"
    value = _FRACTION_RE.sub(_pad_fraction, value, count=1)

    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        parsed = None
        for fmt in _FALLBACK_TIME_FORMATS:
            try:
                parsed = datetime.strptime(text.strip(), fmt)
                break
            except ValueError:
                continue
        if parsed is None:
            return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_ymd(value: date) -> str:
    return value.strftime(YMD_FORMAT)


def format_ymdhm(value: datetime) -> str:
    return value.strftime(YMDHM_FORMAT)


def format_ymdhms(value: datetime | None) -> str:
    if value is None:
        return ""
    return value.strftime(YMDHMS_FORMAT)


def file_name_part(text: str) -> str:
    """Make *text* safe for use inside a file name."""
    return _INVALID_FILE_CHARS_RE.sub("-", text.strip())


def xml_element_name(text: str, replacement: str = "_") -> str:
    """Coerce *text* into a valid XML element name.

    Invalid characters are replaced; a name that would start with a digit,
    '-' or '.' gets a leading underscore.
    """
    name = _INVALID_XML_NAME_CHARS_RE.sub(replacement, text.strip())
    if not name:
        return "_"
    if name[0].isdigit() or name[0] in "-.":
        name = "_" + name
    return name
