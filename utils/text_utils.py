"""
Text utilities for cleaning raw CSV values.

Supplier files arrive from spreadsheets, ERPs and FTP drops, so values carry
byte-order marks, non-breaking spaces, stray control characters and
currency decoration. Everything read from a file goes through here.
"""

import math
import re
from typing import Mapping, Optional

BOM = "\ufeff"

# Space characters only. re's \s also matches the separators \x1c-\x1f
# and \x85, which are controls and get removed, not turned into spaces.
_WHITESPACE = (
    "\t\n\v\f\r \u00a0\u1680\u2000\u2001\u2002\u2003\u2004\u2005"
    "\u2006\u2007\u2008\u2009\u200a\u2028\u2029\u202f\u205f\u3000\ufeff"
)
_WHITESPACE_RUN = re.compile(f"[{_WHITESPACE}]+")
# C0 controls, DEL and C1 controls
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f]")
_NON_NUMERIC = re.compile(r"[^0-9.\-]")
# Longest leading decimal: "12.50.3" -> "12.50", "-.5" -> "-.5"
_LEADING_NUMBER = re.compile(r"^-?(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)")


def _collapse(value: str) -> str:
    return _WHITESPACE_RUN.sub(" ", value.strip(_WHITESPACE))


def clean_value(value: Optional[str]) -> Optional[str]:
    """
    Clean a single raw field value.

    - "\\ufeffABC-1" -> "ABC-1"
    - "  Widget   Pro " -> "Widget Pro"
    - "Wid\\x00get" -> "Widget"

    Steps: strip a leading BOM, trim, collapse whitespace runs to one space,
    remove C0/C1 control characters. Removing control characters can leave
    whitespace next to each other, so the whitespace steps run again.
    Cleaning an already clean value returns it unchanged.

    Args:
        value: Raw text (None is treated as empty)

    Returns:
        Cleaned string, or None if nothing is left
    """
    if value is None:
        return None
    if not isinstance(value, str):
        value = str(value)

    if value.startswith(BOM):
        value = value[len(BOM):]

    value = _collapse(value)

    without_controls = _CONTROL_CHARS.sub("", value)
    if without_controls != value:
        value = _collapse(without_controls)

    return value or None


def clean_header(value: Optional[str]) -> str:
    """Clean a column name; empty headers become ""."""
    return clean_value(value) or ""


def parse_number(value: Optional[str]) -> Optional[float]:
    """
    Coerce a raw value to a finite float.

    - "$12.50" -> 12.5
    - "1,234.00 EUR" -> 1234.0
    - "12,50" -> 1250.0 (comma is not a decimal separator)
    - "abc" -> None

    Every character other than digits, "." and "-" is removed, then the
    leading decimal number is parsed. Values that overflow to infinity are
    rejected.

    Args:
        value: Raw text

    Returns:
        Finite float, or None if no number could be read
    """
    cleaned = clean_value(value)
    if cleaned is None:
        return None

    stripped = _NON_NUMERIC.sub("", cleaned)
    match = _LEADING_NUMBER.match(stripped)
    if not match:
        return None

    number = float(match.group(0))
    if not math.isfinite(number):
        return None
    return number


def is_blank_row(row: Mapping[str, Optional[str]]) -> bool:
    """True if every value of the row is empty after cleaning."""
    return all(clean_value(v) is None for v in row.values())
