# src/esg_mapping/compliance/evaluator.py
from __future__ import annotations

import logging
import re
from calendar import monthrange
from datetime import date, datetime
from functools import lru_cache
from typing import Dict, List, Optional, Sequence, Set, Tuple

from esg_mapping.compliance.rules import known_standards
from esg_mapping.core.errors import InvalidStandardError, ValidationError
from esg_mapping.core.types import (
    CATEGORIES,
    ComplianceResult,
    ComplianceRuleSet,
    KPIMapping,
    MappingQuality,
    MissingKPI,
)
from esg_mapping.matching.dictionary import KPIDictionary

logger = logging.getLogger(__name__)

SEVERITY_WEIGHTS = {"critical": 3, "warning": 2}

HIGH_CONFIDENCE = 0.8
MEDIUM_CONFIDENCE = 0.6

_QUARTER_RE = re.compile(r"^(\d{4})Q([1-4])$")
_MONTH_RE = re.compile(r"^(\d{4})-(\d{1,2})$")


@lru_cache(maxsize=1)
def _bundled_dictionary() -> KPIDictionary:
    return KPIDictionary.from_json()


# ---------------------------------------------------------------------
# Period handling
# ---------------------------------------------------------------------

def parse_period(period: str) -> Tuple[date, date]:
    """
    "2024Q3" -> (2024-07-01, 2024-09-30), "2024-12" -> (2024-12-01, 2024-12-31).
    """
    text = (period or "").strip().upper()

    m = _QUARTER_RE.match(text)
    if m:
        year, quarter = int(m.group(1)), int(m.group(2))
        first_month = (quarter - 1) * 3 + 1
        last_month = first_month + 2
        return date(year, first_month, 1), date(year, last_month, monthrange(year, last_month)[1])

    m = _MONTH_RE.match(text)
    if m:
        year, month = int(m.group(1)), int(m.group(2))
        if 1 <= month <= 12:
            return date(year, month, 1), date(year, month, monthrange(year, month)[1])

    raise ValidationError(f"Unsupported period format: {period!r} (expected 2024Q3 or 2024-12)")


# ---------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------

def satisfied_kpi_ids(mappings: Sequence[KPIMapping], threshold: float) -> Set[str]:
    return {
        m.best_match.id
        for m in mappings
        if m.error is None and m.best_match is not None and m.adjusted_confidence >= threshold
    }


def _mapping_quality(mappings: Sequence[KPIMapping]) -> MappingQuality:
    high = medium = low = unmapped = 0
    for m in mappings:
        if m.error is not None or not m.candidates:
            unmapped += 1
        elif m.adjusted_confidence >= HIGH_CONFIDENCE:
            high += 1
        elif m.adjusted_confidence >= MEDIUM_CONFIDENCE:
            medium += 1
        else:
            low += 1

    return MappingQuality(
        total_mapped=sum(1 for m in mappings if m.best_match is not None),
        high_confidence=high,
        medium_confidence=medium,
        low_confidence=low,
        unmapped=unmapped,
    )


def _status(critical_missing: int, warning_missing: int, rate: float) -> str:
    if critical_missing > 0:
        return "critical"
    if warning_missing > 0 or rate < 100:
        return "warning"
    return "compliant"


def evaluate_compliance(
    mappings: Sequence[KPIMapping],
    rule_set: ComplianceRuleSet,
    *,
    dictionary: Optional[KPIDictionary] = None,
    period: str = "",
    checked_at: Optional[datetime] = None,
) -> ComplianceResult:
    """
    Check finalized mappings against a rule set.

    A required KPI counts as reported when an error-free mapping points to
    it with adjusted confidence at or above the rule set threshold. Pure:
    the same inputs always give the same result apart from ``checked_at``.

    Raises InvalidStandardError when the rule set names an unknown standard.
    """
    standards = known_standards()
    if rule_set.standard not in standards:
        raise InvalidStandardError(rule_set.standard, known=standards)

    dictionary = dictionary if dictionary is not None else _bundled_dictionary()
    threshold = rule_set.min_confidence_threshold
    satisfied = satisfied_kpi_ids(mappings, threshold)

    missing: List[MissingKPI] = []
    total = 0
    weights_total: Dict[str, int] = {}
    weights_met: Dict[str, int] = {}

    for kpi_id, severity in rule_set.per_kpi_severity.items():
        defn = dictionary.get(kpi_id)
        if defn is None:
            logger.warning("compliance: required KPI %s is not in the dictionary; skipped", kpi_id)
            continue
        if defn.category not in rule_set.required_categories:
            continue

        total += 1
        weight = SEVERITY_WEIGHTS.get(severity, 1)
        weights_total[defn.category] = weights_total.get(defn.category, 0) + weight

        if kpi_id in satisfied:
            weights_met[defn.category] = weights_met.get(defn.category, 0) + weight
            continue

        missing.append(
            MissingKPI(
                kpi_id=kpi_id,
                kpi_name=defn.name,
                category=defn.category,
                severity=severity,
                expected_unit=defn.preferred_unit,
            )
        )

    critical = sum(1 for m in missing if m.severity == "critical")
    warning = sum(1 for m in missing if m.severity == "warning")
    rate = 100.0 if total == 0 else round((total - len(missing)) / total * 100, 2)

    category_scores = {
        cat: (
            round(weights_met.get(cat, 0) / weights_total[cat] * 100, 2)
            if weights_total.get(cat)
            else 100.0
        )
        for cat in CATEGORIES
        if cat in rule_set.required_categories
    }

    result = ComplianceResult(
        period=period,
        standard=rule_set.standard,
        total_kpis=total,
        missing_kpis=tuple(missing),
        critical_missing_count=critical,
        warning_missing_count=warning,
        compliance_rate=rate,
        status=_status(critical, warning, rate),
        category_scores=category_scores,
        mapping_quality=_mapping_quality(mappings),
        checked_at=checked_at,
    )

    logger.info(
        "compliance: %s %s -> %s (%.2f%%, %d critical / %d warning missing)",
        rule_set.standard, period or "-", result.status, rate, critical, warning,
    )
    return result
