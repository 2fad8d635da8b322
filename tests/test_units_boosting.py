# tests/test_units_boosting.py
import math

import pytest

from esg_mapping.config import BoostSettings
from esg_mapping.core.types import ConfidenceBoosts
from esg_mapping.matching.boosting import (
    adjust_confidence,
    compute_boosts,
    sample_size_boost,
    value_range_boost,
)
from esg_mapping.utils.units import canonical_unit, convert_value, unit_family, unit_similarity

from conftest import make_group

SETTINGS = BoostSettings()


@pytest.mark.parametrize(
    "a,b,expected",
    [
        ("t-CO2", "t-co2", 1.0),
        ("tCO2e", "t-CO2", 1.0),
        ("m³", "m3", 1.0),
        ("人", "people", 1.0),
        ("kWh", "MWh", 0.8),
        ("kg-CO2", "t-CO2", 0.8),
        ("kg", "MWh", 0.0),
        (None, "t", 0.0),
        ("", "t", 0.0),
    ],
)
def test_unit_similarity(a, b, expected):
    assert unit_similarity(a, b) == expected


def test_unit_aliases_and_families():
    assert canonical_unit(" Tons ") == "t"
    assert unit_family("GJ") == "energy"
    assert unit_family("widgets") is None


@pytest.mark.parametrize(
    "value,src,dst,expected",
    [
        (1, "MWh", "kWh", 1000.0),
        (2500, "kg-CO2", "t-CO2", 2.5),
        (3.6, "GJ", "MWh", 1.0),
        (1, "GWh", "MWh", 1000.0),
        (1500, "liter", "m3", 1.5),
        (7, "Tons", "t", 7),
    ],
)
def test_convert_value_within_a_family(value, src, dst, expected):
    assert convert_value(value, src, dst) == pytest.approx(expected)


@pytest.mark.parametrize("src,dst", [("kg", "MWh"), ("JPY", "USD"), ("widgets", "t"), ("", "t")])
def test_convert_value_across_families_is_refused(src, dst):
    assert convert_value(5, src, dst) is None


def test_boosts_for_matching_emissions_group(dictionary):
    group = make_group("CO2_SCOPE1", ["100", "200", "300"], "t-CO2")
    boosts = compute_boosts(group, dictionary.get("CO2_SCOPE1"), SETTINGS)

    assert boosts.unit_match == pytest.approx(0.15)
    assert boosts.data_quality == pytest.approx(0.10)
    assert boosts.sample_size == pytest.approx(0.08 * math.log(3) / math.log(10), abs=1e-6)
    assert boosts.value_range == pytest.approx(0.07)


def test_family_match_gets_partial_unit_bonus(dictionary):
    group = make_group("ENERGY_USE", ["100"], "kWh")
    boosts = compute_boosts(group, dictionary.get("ENERGY_USE"), SETTINGS)
    assert boosts.unit_match == pytest.approx(0.15 * 0.8)


def test_every_boost_is_bounded(dictionary):
    group = make_group("CO2_SCOPE1", ["1"] * 50, "t-CO2")
    for defn in dictionary.active():
        boosts = compute_boosts(group, defn, SETTINGS)
        assert 0.0 <= boosts.unit_match <= SETTINGS.unit_match_bonus
        assert 0.0 <= boosts.data_quality <= SETTINGS.data_quality_cap
        assert 0.0 <= boosts.sample_size <= SETTINGS.sample_size_cap
        assert boosts.value_range in (0.0, SETTINGS.value_range_bonus)


@pytest.mark.parametrize("n,expected", [(1, 0.0), (10, 0.08), (100, 0.08)])
def test_sample_size_saturates(n, expected):
    group = make_group("CO2_SCOPE1", ["1"] * n, "t-CO2")
    assert sample_size_boost(group, SETTINGS) == pytest.approx(expected)


def test_percentage_range_check(dictionary):
    renewable = dictionary.get("RENEWABLE_ENERGY")

    fractions = make_group("RENEWABLE_ENERGY", ["30%", "40%"], "%")
    assert value_range_boost(fractions, renewable, SETTINGS) == pytest.approx(0.07)

    whole_numbers = make_group("RENEWABLE_ENERGY", ["30", "40"], "%")
    assert value_range_boost(whole_numbers, renewable, SETTINGS) == 0.0


def test_negative_values_get_no_range_bonus(dictionary):
    group = make_group("CO2_SCOPE1", ["-10", "20"], "t-CO2")
    assert value_range_boost(group, dictionary.get("CO2_SCOPE1"), SETTINGS) == 0.0


def test_adjusted_confidence_is_clamped():
    boosts = ConfidenceBoosts(unit_match=0.15, data_quality=0.1, sample_size=0.08, value_range=0.07)
    assert adjust_confidence(0.95, boosts) == 1.0
    assert adjust_confidence(0.2, ConfidenceBoosts()) == 0.2
    assert adjust_confidence(0.5, boosts) == pytest.approx(0.9)
