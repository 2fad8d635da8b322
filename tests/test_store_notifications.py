# tests/test_store_notifications.py
from datetime import date, datetime, timezone
from unittest.mock import MagicMock

import pytest

from esg_mapping.compliance.evaluator import evaluate_compliance
from esg_mapping.compliance.notifications import (
    build_compliance_events,
    build_deadline_event,
    dispatch_events,
)
from esg_mapping.compliance.rules import load_rule_set
from esg_mapping.compliance.store import ComplianceService, InMemoryComplianceStore
from esg_mapping.core.errors import PersistenceError, ValidationError

from conftest import make_mapping

FIXED_NOW = datetime(2024, 10, 5, 9, 0, tzinfo=timezone.utc)


class BrokenStore:
    def __init__(self, fail_get=False, fail_save=False):
        self.fail_get = fail_get
        self.fail_save = fail_save
        self.saved = []

    def get(self, period, standard):
        if self.fail_get:
            raise PersistenceError("database unavailable")
        return None

    def save(self, result):
        if self.fail_save:
            raise PersistenceError("database unavailable")
        self.saved.append(result)


@pytest.fixture
def service(dictionary):
    return ComplianceService(InMemoryComplianceStore(), dictionary=dictionary, clock=lambda: FIXED_NOW)


# ---------------------------------------------------------------------
# Get-or-compute
# ---------------------------------------------------------------------

def test_result_is_computed_once_then_served_from_store(service, dictionary):
    rule_set = load_rule_set("issb")
    mappings = [make_mapping(dictionary, "CO2_SCOPE1")]

    first = service.get_or_compute("2024Q3", mappings, rule_set)
    second = service.get_or_compute("2024Q3", [], rule_set)

    assert first.computed is True
    assert first.persisted is True
    assert first.result.checked_at == FIXED_NOW
    assert second.computed is False
    assert second.result is first.result
    assert len(service.store) == 1


def test_force_recomputes(service, dictionary):
    rule_set = load_rule_set("issb")
    service.get_or_compute("2024Q3", [], rule_set)

    outcome = service.get_or_compute("2024Q3", [make_mapping(dictionary, "CO2_SCOPE1")], rule_set, force=True)

    assert outcome.computed is True
    assert service.store.get("2024Q3", "issb") is outcome.result


def test_results_are_keyed_by_period_and_standard(service):
    service.get_or_compute("2024Q3", [], load_rule_set("issb"))
    service.get_or_compute("2024Q3", [], load_rule_set("csrd"))
    service.get_or_compute("2024-12", [], load_rule_set("issb"))

    assert len(service.store) == 3


def test_failed_save_still_returns_result(dictionary):
    store = BrokenStore(fail_save=True)
    service = ComplianceService(store, dictionary=dictionary)

    outcome = service.get_or_compute("2024Q3", [], load_rule_set("issb"))

    assert outcome.computed is True
    assert outcome.persisted is False
    assert outcome.result.status == "critical"
    assert outcome.warnings == ["Compliance result was computed but could not be saved"]


def test_failed_read_recomputes(dictionary):
    store = BrokenStore(fail_get=True)
    service = ComplianceService(store, dictionary=dictionary)

    outcome = service.get_or_compute("2024Q3", [], load_rule_set("issb"))

    assert outcome.computed is True
    assert outcome.persisted is True
    assert len(store.saved) == 1
    assert outcome.warnings == ["Stored compliance result could not be read; recomputed"]


def test_invalid_period_is_rejected(service):
    with pytest.raises(ValidationError):
        service.get_or_compute("last quarter", [], load_rule_set("issb"))


def test_history_keeps_every_check_newest_first(service, dictionary):
    rule_set = load_rule_set("issb")
    first = service.get_or_compute("2024Q2", [], rule_set).result
    second = service.get_or_compute("2024Q3", [], rule_set).result
    service.get_or_compute("2024Q3", [], load_rule_set("csrd"))
    third = service.get_or_compute(
        "2024Q3", [make_mapping(dictionary, "CO2_SCOPE1")], rule_set, force=True,
    ).result

    assert service.history("issb") == [third, second, first]
    assert service.history("issb", limit=2) == [third, second]
    assert len(service.history("csrd")) == 1
    assert service.history("custom") == []
    assert service.lookup("2024Q3", "issb") is third


def test_history_limit_must_be_positive(service):
    with pytest.raises(ValidationError):
        service.history("issb", limit=0)


# ---------------------------------------------------------------------
# Notification events
# ---------------------------------------------------------------------

def test_events_per_severity(dictionary):
    rule_set = load_rule_set("issb", required_categories=["Environment"])
    result = evaluate_compliance(
        [make_mapping(dictionary, "CO2_SCOPE2")], rule_set, dictionary=dictionary, period="2024Q3",
    )

    events = build_compliance_events(result)

    assert [e.type for e in events] == ["compliance_missing", "compliance_warning"]
    critical, warning = events
    assert critical.priority == "high"
    assert critical.title == "Critical KPIs missing - 2024Q3"
    assert critical.message == "2 critical KPI(s) missing under ISSB."
    assert {k["kpi_id"] for k in critical.missing_kpis} == {"CO2_SCOPE1", "ENERGY_USE"}
    assert critical.action_url == "/compliance/check?period=2024Q3&standard=issb"
    assert warning.priority == "medium"
    assert len(warning.missing_kpis) == 3


def test_compliant_result_has_no_events(dictionary):
    rule_set = load_rule_set("custom", required_categories=["Environment"])
    result = evaluate_compliance([], rule_set, dictionary=dictionary, period="2024Q3")
    assert build_compliance_events(result) == []


@pytest.mark.parametrize(
    "today,priority,days_left",
    [
        (date(2024, 10, 25), "medium", 5),
        (date(2024, 10, 29), "high", 1),
        (date(2024, 11, 2), "high", -3),
    ],
)
def test_deadline_reminders(today, priority, days_left):
    event = build_deadline_event("2024Q3", today)

    assert event.type == "system_alert"
    assert event.priority == priority
    assert event.details == {"deadline": "2024-10-30", "days_left": days_left}


def test_no_reminder_while_deadline_is_far():
    assert build_deadline_event("2024Q3", date(2024, 10, 1)) is None


def test_overdue_reminder_wording():
    event = build_deadline_event("2024Q3", date(2024, 11, 2))
    assert event.title == "Reporting deadline passed - 2024Q3"
    assert "3 day(s) ago" in event.message


def test_delivery_failures_become_warnings(dictionary):
    rule_set = load_rule_set("issb")
    result = evaluate_compliance([], rule_set, dictionary=dictionary, period="2024Q3")
    events = build_compliance_events(result)

    notifier = MagicMock(side_effect=[ConnectionError("smtp down"), None])
    warnings = dispatch_events(events, notifier)

    assert notifier.call_count == 2
    assert warnings == ["Notification 'compliance_missing' could not be delivered"]
