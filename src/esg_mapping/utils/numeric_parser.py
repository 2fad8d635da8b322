from __future__ import annotations

import math
import re
from typing import Any, Optional


# All known whitespace variants (regular + non-breaking)
SPACE_CHARS = [
    "\u0020",  # normal space
    "\u00A0",  # NBSP
    "\u2007",  # figure space
    "\u202F",  # narrow NBSP
]

CURRENCY_SYMBOLS = "$€¥£"

# Stripped before parsing a table cell: currency, percent, (full-width) parentheses
_DECORATION_RE = re.compile(r"[%$€¥£()（）]")


def _normalize_spaces(s: str) -> str:
    """Replace all types of weird spaces with a normal space."""
    for ch in SPACE_CHARS:
        s = s.replace(ch, " ")
    return s


def parse_locale_number(num: Optional[str]) -> Optional[float]:
    """
    Robust locale-aware numeric parser.

    Handles:
      - 123,400
      - 1,200,000
      - 1.200.000
      - 1.234,56
      - 1 200 000
      - 1200000.
      - 123.45, 12.500 (a single dot group is a decimal)
      - 123,45
      - 1.5e3
    """
    if not num:
        return None

    s = _normalize_spaces(num.strip())
    if not s:
        return None

    # -- Remove trailing dots like "1200000." --
    s = s.rstrip(".")

    # Remove internal spaces
    s_no_space = s.replace(" ", "")

    # Case 1: comma-grouped thousands: 1,200,000
    if re.match(r"^\d{1,3}(,\d{3})+$", s_no_space):
        return float(s_no_space.replace(",", ""))

    # Case 1b: dot-grouped thousands need two or more groups: 1.200.000
    # A single group ("12.500") is a decimal.
    if re.match(r"^\d{1,3}(\.\d{3}){2,}$", s_no_space):
        return float(s_no_space.replace(".", ""))

    # Case 1c: dot-grouped thousands with a comma decimal: 1.234,56
    if re.match(r"^\d{1,3}(\.\d{3})+,\d+$", s_no_space):
        return float(s_no_space.replace(".", "").replace(",", "."))

    # Case 2: spaced thousands: 1 200 000
    if re.match(r"^\d{1,3}( \d{3})+$", s):
        return float(s.replace(" ", ""))

    # Case 3: integer
    if re.match(r"^\d+$", s_no_space):
        return float(s_no_space)

    # Case 4: decimal: 123.45 or 123,45
    if re.match(r"^\d+[.,]\d+$", s_no_space):
        return float(s_no_space.replace(",", "."))

    # Case 5: grouped thousands with decimals: 1,234.56
    if re.match(r"^\d{1,3}(,\d{3})+\.\d+$", s_no_space):
        return float(s_no_space.replace(",", ""))

    # Case 6: anything float() accepts (scientific notation)
    try:
        value = float(s_no_space)
    except ValueError:
        return None

    return value if math.isfinite(value) else None


def parse_numeric_value(raw: Any) -> Optional[float]:
    """
    Parse a table cell into a float.

    Numbers pass through; strings are cleaned of currency symbols, percent
    signs and parentheses before locale-aware parsing. A value carrying "%"
    is returned as a fraction ("35%" -> 0.35). Returns None when the cell
    is empty or not numeric.
    """
    if raw is None or isinstance(raw, bool):
        return None

    if isinstance(raw, (int, float)):
        value = float(raw)
        return value if math.isfinite(value) else None

    s = _normalize_spaces(str(raw).strip())
    if not s:
        return None

    is_percent = "%" in s
    cleaned = _DECORATION_RE.sub("", s).strip()

    sign = 1.0
    if cleaned[:1] in ("-", "−"):
        sign = -1.0
        cleaned = cleaned[1:].strip()
    elif cleaned[:1] == "+":
        cleaned = cleaned[1:].strip()

    value = parse_locale_number(cleaned)
    if value is None:
        return None

    value *= sign
    if is_percent:
        value /= 100.0

    return value


def looks_numeric(sample: str) -> bool:
    """True when the sample parses as a number once separators and symbols are removed."""
    cleaned = re.sub(r"[,\s%$€¥£]", "", sample)
    try:
        return math.isfinite(float(cleaned))
    except ValueError:
        return False
