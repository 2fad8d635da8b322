# tests/test_report.py
from esg_mapping.compliance.evaluator import evaluate_compliance
from esg_mapping.compliance.report import FOLLOW_UPS, generate_report
from esg_mapping.compliance.rules import load_rule_set

from conftest import make_mapping


def _issb_result(dictionary, mappings, **kwargs):
    rule_set = load_rule_set("issb", **kwargs)
    return evaluate_compliance(mappings, rule_set, dictionary=dictionary, period="2024Q3")


def test_summary_mentions_rate_and_categories(dictionary):
    result = _issb_result(dictionary, [make_mapping(dictionary, "CO2_SCOPE1")])
    report = generate_report(result)

    assert report.summary.startswith("ISSB compliance for 2024Q3: 10.00% (1/10 required KPIs reported).")
    assert "Critical KPIs are missing" in report.summary
    assert "Category coverage: Environment 20.00%, Social 0.00%, Governance 0.00%." in report.summary
    assert "9 KPI(s) missing (4 critical, 5 warning)." in report.summary


def test_recommendations_group_missing_kpis_by_category(dictionary):
    result = _issb_result(dictionary, [], required_categories=["Environment", "Governance"])
    recommendations = generate_report(result).recommendations

    assert recommendations[0].startswith("Environment: report Scope 1 emissions, Scope 2 emissions")
    assert recommendations[0].endswith("(6 missing)")
    assert recommendations[1] == "Governance: report Board independence ratio (1 missing)"


def test_next_steps_put_critical_kpis_first(dictionary):
    mappings = [make_mapping(dictionary, "CO2_SCOPE1", confidence=0.3)]
    result = _issb_result(dictionary, mappings, required_categories=["Environment"])
    steps = generate_report(result).next_steps

    kpi_steps = [s for s in steps if s.startswith("[")]
    assert kpi_steps[0].startswith("[critical] Scope 1 emissions: Collect direct (Scope 1) emission data")
    assert [s.split("]")[0] for s in kpi_steps] == ["[critical"] * 3 + ["[warning"] * 3
    assert steps[len(kpi_steps):] == [
        FOLLOW_UPS["plan"],
        FOLLOW_UPS["collect"],
        FOLLOW_UPS["review"],
        FOLLOW_UPS["standardize"],
        FOLLOW_UPS["schedule"],
    ]


def test_compliant_report(dictionary):
    ids = ["CO2_SCOPE1", "CO2_SCOPE2", "ENERGY_USE", "RENEWABLE_ENERGY", "WATER_USE", "WASTE_TOTAL"]
    result = _issb_result(dictionary, [make_mapping(dictionary, i) for i in ids], required_categories=["Environment"])
    report = generate_report(result)

    assert "All required KPIs are reported" in report.summary
    assert report.recommendations == ()
    assert report.next_steps == (FOLLOW_UPS["schedule"],)


def test_report_is_deterministic(dictionary):
    result = _issb_result(dictionary, [make_mapping(dictionary, "WATER_USE")])
    assert generate_report(result) == generate_report(result)
