# src/esg_mapping/compliance/notifications.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from esg_mapping.compliance.evaluator import parse_period
from esg_mapping.compliance.rules import standard_label
from esg_mapping.core.types import ComplianceResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationEvent:
    type: str
    priority: str
    title: str
    message: str
    severity: Optional[str] = None
    period: str = ""
    standard: str = ""
    missing_kpis: Tuple[Dict[str, str], ...] = ()
    compliance_rate: Optional[float] = None
    action_url: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


Notifier = Callable[[NotificationEvent], None]

# severity -> event template
GAP_TEMPLATES = {
    "critical": {
        "type": "compliance_missing",
        "priority": "high",
        "title": "Critical KPIs missing - {period}",
        "message": "{count} critical KPI(s) missing under {label}.",
    },
    "warning": {
        "type": "compliance_warning",
        "priority": "medium",
        "title": "KPIs need review - {period}",
        "message": "{count} KPI(s) under {label} need attention.",
    },
}


def _action_url(period: str, standard: str) -> str:
    return f"/compliance/check?period={period}&standard={standard}"


def build_compliance_events(result: ComplianceResult) -> List[NotificationEvent]:
    """One event per severity that has missing KPIs, critical first."""
    counts = {
        "critical": result.critical_missing_count,
        "warning": result.warning_missing_count,
    }
    label = standard_label(result.standard)

    events: List[NotificationEvent] = []
    for severity, template in GAP_TEMPLATES.items():
        count = counts[severity]
        if count <= 0:
            continue

        events.append(
            NotificationEvent(
                type=template["type"],
                priority=template["priority"],
                title=template["title"].format(period=result.period),
                message=template["message"].format(count=count, label=label),
                severity=severity,
                period=result.period,
                standard=result.standard,
                missing_kpis=tuple(
                    {"kpi_id": m.kpi_id, "kpi_name": m.kpi_name, "category": m.category}
                    for m in result.missing_kpis
                    if m.severity == severity
                ),
                compliance_rate=result.compliance_rate,
                action_url=_action_url(result.period, result.standard),
            )
        )
    return events


def build_deadline_event(
    period: str,
    today: date,
    reporting_window_days: int = 30,
    warn_days: int = 7,
) -> Optional[NotificationEvent]:
    """
    Reminder for the reporting deadline of ``period`` (period end plus the
    reporting window). None while the deadline is more than ``warn_days`` away.
    """
    _, period_end = parse_period(period)
    deadline = period_end + timedelta(days=reporting_window_days)
    days_left = (deadline - today).days

    if days_left > warn_days:
        return None

    if days_left < 0:
        title = f"Reporting deadline passed - {period}"
        message = f"The reporting deadline {deadline.isoformat()} passed {-days_left} day(s) ago."
        priority = "high"
    else:
        title = f"Reporting deadline approaching - {period}"
        message = f"{days_left} day(s) left until the reporting deadline {deadline.isoformat()}."
        priority = "high" if days_left <= 1 else "medium"

    return NotificationEvent(
        type="system_alert",
        priority=priority,
        title=title,
        message=message,
        period=period,
        details={"deadline": deadline.isoformat(), "days_left": days_left},
    )


def dispatch_events(events: Iterable[NotificationEvent], notifier: Notifier) -> List[str]:
    """
    Hand events to the caller's notifier. Delivery failures are logged and
    returned as warnings; they never abort the caller.
    """
    warnings: List[str] = []
    for event in events:
        try:
            notifier(event)
        except Exception as exc:  # noqa: BLE001
            logger.error("notifications: delivery of '%s' failed: %s", event.title, exc)
            warnings.append(f"Notification '{event.type}' could not be delivered")
    return warnings
