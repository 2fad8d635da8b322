# tests/test_sample_analyzer.py
import pytest

from esg_mapping.analysis.sample_analyzer import analyze_kpi_group, analyze_samples, create_embedding_summary


def test_booleans_win_over_numbers():
    result = analyze_samples(["1", "0", "1", "0"])
    assert result.data_type == "boolean"
    assert result.confidence == 1.0
    assert result.pattern == "true_false"


def test_boolean_tokens_are_case_insensitive():
    assert analyze_samples(["TRUE", "No", "はい", "off"]).data_type == "boolean"


@pytest.mark.parametrize(
    "samples,pattern",
    [
        (["2024-01-01", "2024-02-01", "2024-03-01"], "iso_date"),
        (["2024/01/01", "2024/02/01"], "iso_date"),
        (["01/31/2024", "02/28/2024"], "mm_dd_yyyy"),
        (["2024年1月1日", "2024年12月31日"], "japanese_date"),
    ],
)
def test_dates(samples, pattern):
    result = analyze_samples(samples)
    assert result.data_type == "date"
    assert result.pattern == pattern


def test_pure_digits_are_not_dates():
    result = analyze_samples(["2024", "2025", "2026"])
    assert result.data_type == "number"


def test_percentages():
    result = analyze_samples(["12%", "30%", "45%"])
    assert result.data_type == "percentage"
    assert result.unit == "%"


def test_currency_records_first_symbol():
    result = analyze_samples(["$100", "$200", "300"])
    assert result.data_type == "currency"
    assert result.unit == "$"


def test_plain_numbers():
    result = analyze_samples(["1,000", "2,500", "3"])
    assert result.data_type == "number"
    assert result.pattern == "decimal"
    assert result.confidence == 1.0


def test_text_fallback():
    result = analyze_samples(["Tokyo", "Osaka", "Nagoya"])
    assert result.data_type == "text"
    assert result.confidence == 0.6
    assert result.pattern == "free_text"


def test_no_valid_samples():
    result = analyze_samples(["", "   ", None])
    assert result.data_type == "text"
    assert result.confidence == 0.0
    assert result.summary == "No valid samples found"


def test_statistics_and_sample_cap():
    stats = analyze_samples(["a", "bb", "a"]).statistics
    assert stats.count == 3
    assert stats.unique_values == 2
    assert stats.numeric_count == 0
    assert stats.avg_length == 1.33

    assert analyze_samples([str(i) for i in range(15)]).statistics.count == 10


def test_embedding_summary():
    analysis = analyze_samples(["12%", "30%", "45%", "50%"])
    text = create_embedding_summary(analysis, "ratio")

    assert text.startswith('Column "ratio" contains percentage data.')
    assert "Unit: %." in text
    assert "Pattern: percentage." in text
    assert "Statistics: 4 total samples, 4 unique values, 4 numeric values." in text
    assert text.endswith("Examples: 12%, 30%, 45%")
    assert text == create_embedding_summary(analysis, "ratio")


def test_kpi_group_quality_clean_data():
    result = analyze_kpi_group(
        "CO2_SCOPE1",
        ["100", "200", "300"],
        ["t", "t", "t"],
        ["2024-01-01", "2024-02-01", "2024-03-01"],
    )
    assert result.quality_score == 1.0
    assert result.recommendations == ()
    assert result.data_type_analysis.data_type == "number"


def test_kpi_group_quality_messy_data():
    result = analyze_kpi_group("CO2_SCOPE1", ["a", "b"], [], [])
    assert result.quality_score == 0.6
    assert len(result.recommendations) == 3
