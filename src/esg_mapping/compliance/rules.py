# src/esg_mapping/compliance/rules.py
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from esg_mapping.config import load_config
from esg_mapping.core.errors import InvalidStandardError, ValidationError
from esg_mapping.core.types import CATEGORIES, SEVERITIES, ComplianceRuleSet

logger = logging.getLogger(__name__)


def _rules(rules: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return rules if rules is not None else load_config().compliance_rules


def known_standards(rules: Optional[Mapping[str, Any]] = None) -> List[str]:
    return list((_rules(rules).get("standards") or {}).keys())


def standard_label(standard: str, rules: Optional[Mapping[str, Any]] = None) -> str:
    entry = (_rules(rules).get("standards") or {}).get(standard.lower(), {})
    return entry.get("label", standard.upper())


def kpi_suggestion(kpi_id: str, rules: Optional[Mapping[str, Any]] = None) -> str:
    suggestions = _rules(rules).get("suggestions") or {}
    return suggestions.get(kpi_id, f"Collect data for {kpi_id} and include it in the next upload")


def severity_table(standard: str, rules: Optional[Mapping[str, Any]] = None) -> Dict[str, str]:
    """
    kpi_id -> severity for a standard, critical entries first.

    A KPI listed under both severities keeps the stricter one.
    """
    table = _rules(rules)
    standards = table.get("standards") or {}
    key = (standard or "").strip().lower()
    if key not in standards:
        raise InvalidStandardError(standard, known=list(standards.keys()))

    entry = standards[key] or {}
    severities: Dict[str, str] = {}
    for severity in SEVERITIES:
        for kpi_id in entry.get(severity, []) or []:
            severities.setdefault(kpi_id, severity)
    return severities


def _validate_categories(categories: Iterable[str]) -> frozenset:
    cats = frozenset(categories)
    unknown = cats - set(CATEGORIES)
    if unknown:
        raise ValidationError(f"Unknown KPI categories: {', '.join(sorted(unknown))}")
    return cats


def load_rule_set(
    standard: str,
    *,
    required_categories: Optional[Iterable[str]] = None,
    min_confidence_threshold: float = 0.6,
    per_kpi_severity: Optional[Mapping[str, str]] = None,
    rules: Optional[Mapping[str, Any]] = None,
) -> ComplianceRuleSet:
    """
    Build the rule set for ``standard`` (issb, csrd, custom, ... as listed in
    compliance_rules.yaml).

    ``per_kpi_severity`` replaces the bundled severity table when given.
    Raises InvalidStandardError for an unknown standard.
    """
    table = _rules(rules)
    severities = severity_table(standard, table)

    if per_kpi_severity is not None:
        bad = {k: v for k, v in per_kpi_severity.items() if v not in SEVERITIES}
        if bad:
            raise ValidationError(f"Invalid severities: {bad}")
        severities = dict(per_kpi_severity)

    if required_categories is None:
        required_categories = (table.get("defaults") or {}).get("required_categories") or CATEGORIES

    if not 0.0 <= float(min_confidence_threshold) <= 1.0:
        raise ValidationError("min_confidence_threshold must lie in [0, 1]")

    rule_set = ComplianceRuleSet(
        standard=standard.strip().lower(),
        required_categories=_validate_categories(required_categories),
        min_confidence_threshold=float(min_confidence_threshold),
        per_kpi_severity=severities,
    )
    logger.debug(
        "rules: %s -> %d required KPIs in %s",
        rule_set.standard, len(severities), sorted(rule_set.required_categories),
    )
    return rule_set
