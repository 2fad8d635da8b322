# src/esg_mapping/compliance/report.py
from __future__ import annotations

from typing import Dict, List

from esg_mapping.compliance.rules import kpi_suggestion, standard_label
from esg_mapping.core.types import ComplianceResult, DetailedReport

STATUS_SUMMARY = {
    "compliant": "All required KPIs are reported with sufficient confidence.",
    "warning": "Some KPIs are missing or need review before submission.",
    "critical": "Critical KPIs are missing; the disclosure is not ready for submission.",
}

# Generic follow-ups, appended after the per-KPI steps
FOLLOW_UPS = {
    "plan": "Draft a remediation plan starting with the highest-severity KPIs",
    "collect": "Set up data collection owners and a schedule for the missing KPIs",
    "review": "Review low-confidence and unmapped KPI mappings manually",
    "standardize": "Standardize KPI identifiers in source spreadsheets",
    "schedule": "Schedule the next compliance check",
}


def _summary(result: ComplianceResult) -> str:
    label = standard_label(result.standard)
    period = f" for {result.period}" if result.period else ""

    lines = [
        f"{label} compliance{period}: {result.compliance_rate:.2f}% "
        f"({result.total_kpis - len(result.missing_kpis)}/{result.total_kpis} required KPIs reported).",
        STATUS_SUMMARY[result.status],
    ]

    if result.category_scores:
        scores = ", ".join(f"{cat} {score:.2f}%" for cat, score in result.category_scores.items())
        lines.append(f"Category coverage: {scores}.")

    if result.missing_kpis:
        lines.append(
            f"{len(result.missing_kpis)} KPI(s) missing "
            f"({result.critical_missing_count} critical, {result.warning_missing_count} warning)."
        )
    return " ".join(lines)


def _recommendations(result: ComplianceResult) -> List[str]:
    by_category: Dict[str, List[str]] = {}
    for m in result.missing_kpis:
        by_category.setdefault(m.category, []).append(m.kpi_name)

    return [
        f"{category}: report {', '.join(names)} ({len(names)} missing)"
        for category, names in by_category.items()
    ]


def _next_steps(result: ComplianceResult) -> List[str]:
    steps: List[str] = []

    for severity in ("critical", "warning"):
        for m in result.missing_kpis:
            if m.severity == severity:
                steps.append(f"[{severity}] {m.kpi_name}: {kpi_suggestion(m.kpi_id)}")

    if result.status == "critical":
        steps.append(FOLLOW_UPS["plan"])
    if result.missing_kpis:
        steps.append(FOLLOW_UPS["collect"])

    quality = result.mapping_quality
    if quality.low_confidence > 0 or quality.unmapped > 0:
        steps.append(FOLLOW_UPS["review"])
        steps.append(FOLLOW_UPS["standardize"])

    steps.append(FOLLOW_UPS["schedule"])
    return steps


def generate_report(result: ComplianceResult) -> DetailedReport:
    """Human-readable summary, recommendations and next steps for a compliance result."""
    return DetailedReport(
        summary=_summary(result),
        recommendations=tuple(_recommendations(result)),
        next_steps=tuple(_next_steps(result)),
    )
