# src/esg_mapping/matching/boosting.py
from __future__ import annotations

import math

from esg_mapping.config import BoostSettings
from esg_mapping.core.types import CanonicalKPIDefinition, ConfidenceBoosts, KPIGroup
from esg_mapping.utils.units import is_percentage_unit, unit_similarity


def unit_match_boost(group: KPIGroup, kpi: CanonicalKPIDefinition, settings: BoostSettings) -> float:
    """
    Full bonus for the same unit, ``unit_family_credit`` of it for a unit
    of the same convertible family (kWh vs MWh), 0 otherwise.
    """
    similarity = unit_similarity(
        group.common_unit,
        kpi.preferred_unit,
        family_credit=settings.unit_family_credit,
    )
    return settings.unit_match_bonus * similarity


def data_quality_boost(group: KPIGroup, settings: BoostSettings) -> float:
    return min(settings.data_quality_cap, settings.data_quality_scale * group.quality_score)


def sample_size_boost(group: KPIGroup, settings: BoostSettings) -> float:
    """
    Logarithmic in the record count: 0 for one record, full cap at
    ``sample_size_saturation`` records and above.
    """
    n = group.record_count
    saturation = settings.sample_size_saturation
    if n <= 1 or saturation <= 1:
        return 0.0
    return settings.sample_size_cap * min(1.0, math.log(n) / math.log(saturation))


def is_value_range_plausible(group: KPIGroup, kpi: CanonicalKPIDefinition, settings: BoostSettings) -> bool:
    vr = group.value_range
    if vr.min < 0:
        return False

    if is_percentage_unit(kpi.preferred_unit):
        return all(0.0 <= r.value <= 1.0 for r in group.records)

    band = settings.value_range_bands.get(kpi.category)
    if band is None:
        return False

    low, high = band
    return low <= group.aggregated_value <= high


def value_range_boost(group: KPIGroup, kpi: CanonicalKPIDefinition, settings: BoostSettings) -> float:
    return settings.value_range_bonus if is_value_range_plausible(group, kpi, settings) else 0.0


def compute_boosts(group: KPIGroup, kpi: CanonicalKPIDefinition, settings: BoostSettings) -> ConfidenceBoosts:
    return ConfidenceBoosts(
        unit_match=round(unit_match_boost(group, kpi, settings), 6),
        data_quality=round(data_quality_boost(group, settings), 6),
        sample_size=round(sample_size_boost(group, settings), 6),
        value_range=round(value_range_boost(group, kpi, settings), 6),
    )


def adjust_confidence(original: float, boosts: ConfidenceBoosts) -> float:
    """clamp01(original + sum of boosts)"""
    return max(0.0, min(1.0, original + boosts.total))
