from __future__ import annotations

import logging
from typing import Dict, Optional

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------
# Canonical unit definitions
# ---------------------------------------------------------------------
# Spellings seen in uploaded sheets -> one canonical token. Two units are
# an exact match when their canonical tokens are equal.

UNIT_ALIASES: Dict[str, str] = {
    # Emissions
    "t-co2": "t-co2",
    "tco2": "t-co2",
    "tco2e": "t-co2",
    "t-co2e": "t-co2",
    "t_co2e": "t-co2",
    "ton-co2": "t-co2",
    "tonco2": "t-co2",
    "tonsco2e": "t-co2",
    "tonnesco2e": "t-co2",
    "kg-co2": "kg-co2",
    "kgco2": "kg-co2",
    "kgco2e": "kg-co2",

    # Energy
    "mwh": "mwh",
    "megawatthours": "mwh",
    "kwh": "kwh",
    "gwh": "gwh",
    "gj": "gj",
    "mj": "mj",

    # Volume
    "m3": "m3",
    "m^3": "m3",
    "cubicmeters": "m3",
    "l": "l",
    "liter": "l",
    "litre": "l",

    # Mass
    "t": "t",
    "ton": "t",
    "tons": "t",
    "tonnes": "t",
    "トン": "t",
    "kg": "kg",
    "g": "g",

    # People
    "people": "people",
    "person": "people",
    "persons": "people",
    "employees": "people",
    "人": "people",
    "名": "people",

    # Ratio
    "%": "%",
    "percent": "%",
    "pct": "%",

    # Time
    "h": "h",
    "hr": "h",
    "hrs": "h",
    "hours": "h",
    "時間": "h",

    # Count
    "cases": "cases",
    "case": "cases",
    "count": "cases",
    "件": "cases",

    # Currency
    "jpy": "jpy",
    "円": "jpy",
    "百万円": "jpy",
    "億円": "jpy",
    "¥": "jpy",
    "usd": "usd",
    "$": "usd",
    "eur": "eur",
    "€": "eur",
}

# Canonical token -> convertible family
UNIT_FAMILIES: Dict[str, str] = {
    "t-co2": "co2",
    "kg-co2": "co2",
    "mwh": "energy",
    "kwh": "energy",
    "gwh": "energy",
    "gj": "energy",
    "mj": "energy",
    "m3": "volume",
    "l": "volume",
    "t": "mass",
    "kg": "mass",
    "g": "mass",
    "people": "people",
    "%": "percentage",
    "h": "time",
    "cases": "count",
    "jpy": "currency",
    "usd": "currency",
    "eur": "currency",
}

# Canonical token -> multiplier into its family's base unit
# (t-co2, mwh, m3, t, h). Currencies have no fixed rate and are absent.
UNIT_FACTORS: Dict[str, float] = {
    "t-co2": 1.0,
    "kg-co2": 0.001,
    "mwh": 1.0,
    "kwh": 0.001,
    "gwh": 1000.0,
    "gj": 1.0 / 3.6,
    "mj": 1.0 / 3600.0,
    "m3": 1.0,
    "l": 0.001,
    "t": 1.0,
    "kg": 0.001,
    "g": 0.000001,
    "h": 1.0,
    "people": 1.0,
    "%": 1.0,
    "cases": 1.0,
}


def norm_unit_token(u: str) -> str:
    """Lowercase, remove spaces, normalize '³'→'3'."""
    return "".join(u.split()).lower().replace("³", "3")


def canonical_unit(raw_unit: Optional[str]) -> Optional[str]:
    if not raw_unit:
        return None
    token = norm_unit_token(raw_unit)
    return UNIT_ALIASES.get(token, token)


def unit_family(raw_unit: Optional[str]) -> Optional[str]:
    canon = canonical_unit(raw_unit)
    if canon is None:
        return None
    return UNIT_FAMILIES.get(canon)


def unit_similarity(unit_a: Optional[str], unit_b: Optional[str], family_credit: float = 0.8) -> float:
    """
    1.0 for the same unit (case-insensitive, alias aware),
    ``family_credit`` for two units of one convertible family,
    0.0 otherwise or when either side is missing.
    """
    a = canonical_unit(unit_a)
    b = canonical_unit(unit_b)
    if not a or not b:
        return 0.0

    if a == b:
        return 1.0

    family_a = UNIT_FAMILIES.get(a)
    if family_a is not None and family_a == UNIT_FAMILIES.get(b):
        return family_credit

    logger.debug("unit_similarity: no match between '%s' and '%s'", unit_a, unit_b)
    return 0.0


def is_percentage_unit(raw_unit: Optional[str]) -> bool:
    return canonical_unit(raw_unit) == "%"


def convert_value(value: float, from_unit: Optional[str], to_unit: Optional[str]) -> Optional[float]:
    """
    Convert ``value`` between two units of one family ("kWh" -> "MWh").

    Returns the value unchanged for the same unit and None when the units
    are unknown, missing or not convertible.
    """
    a = canonical_unit(from_unit)
    b = canonical_unit(to_unit)
    if not a or not b:
        return None
    if a == b:
        return value

    family = UNIT_FAMILIES.get(a)
    if family is None or family != UNIT_FAMILIES.get(b):
        return None
    if a not in UNIT_FACTORS or b not in UNIT_FACTORS:
        return None

    return value * UNIT_FACTORS[a] / UNIT_FACTORS[b]
