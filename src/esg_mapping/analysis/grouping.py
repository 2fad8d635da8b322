# src/esg_mapping/analysis/grouping.py
from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from esg_mapping.analysis.sample_analyzer import analyze_samples
from esg_mapping.config import GroupingSettings
from esg_mapping.core.errors import ValidationError
from esg_mapping.core.types import (
    ColumnConfig,
    DataQualityReport,
    EmptyResult,
    GroupingResult,
    GroupingStats,
    KPIGroup,
    RawRecord,
    ValueRange,
)
from esg_mapping.utils.numeric_parser import parse_numeric_value
from esg_mapping.utils.units import convert_value

logger = logging.getLogger(__name__)

AGGREGATIONS = ("sum", "mean")

# Keyword heuristics, first hit wins
CATEGORY_KEYWORDS = [
    ("Environment", ("ghg", "co2", "emission", "scope"), ("co2", "carbon")),
    ("Environment", ("energy", "power", "fuel", "electricity"), ("kwh", "mwh", "gwh", "gj")),
    ("Environment", ("water", "h2o"), ("m3", "m³", "liter", "litre")),
    ("Environment", ("waste", "recycle", "disposal"), ()),
    ("Social", ("employee", "staff", "worker", "human", "people", "headcount"), ()),
    ("Social", ("safety", "accident", "incident", "injury"), ()),
    ("Social", ("diversity", "gender", "female", "training"), ()),
    ("Governance", ("governance", "board", "compliance", "director", "risk"), ()),
    ("Financial", ("revenue", "sales", "profit", "roe", "income"), ("jpy", "usd", "eur", "円")),
]


def _cell(row: Mapping[str, Any], column: Optional[str]) -> Any:
    if not column:
        return None
    return row.get(column)


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def _validate(rows: Any, column_config: ColumnConfig) -> None:
    if not isinstance(rows, Sequence) or isinstance(rows, (str, bytes)):
        raise ValidationError("rows must be a list of column-keyed mappings")

    for name in ("kpi_column", "value_column", "unit_column"):
        if not _text(getattr(column_config, name)):
            raise ValidationError(f"column_config.{name} must be a non-empty column name")

    if not rows:
        return

    if not all(isinstance(r, Mapping) for r in rows):
        raise ValidationError("every row must be a mapping of column name to cell")

    first = rows[0]
    missing = [
        col
        for col in (column_config.kpi_column, column_config.value_column, column_config.unit_column)
        if col not in first
    ]
    if missing:
        raise ValidationError(f"Required columns missing from input: {', '.join(missing)}")


# ---------------------------------------------------------------------
# Per-identifier accumulator
# ---------------------------------------------------------------------

@dataclass
class _Bucket:
    identifier: str
    records: List[RawRecord] = field(default_factory=list)
    attempted: int = 0
    non_null: int = 0


def _modal_unit(records: Sequence[RawRecord]) -> str:
    units = [r.unit for r in records if r.unit]
    if not units:
        return ""
    counts = Counter(units)
    best = max(counts.values())
    # Counter keeps insertion order, so the first seen unit wins ties
    return next(u for u, c in counts.items() if c == best)


def _normalize(records: Sequence[RawRecord], common_unit: str) -> Tuple[RawRecord, ...]:
    """Express every value in ``common_unit``; unconvertible values stay as parsed."""
    normalized = []
    for r in records:
        converted = convert_value(r.value, r.unit, common_unit)
        if converted is None:
            converted = r.value
            if r.unit and common_unit and r.unit.lower() != common_unit.lower():
                logger.debug("grouping: cannot convert %s to %s", r.unit, common_unit)
        normalized.append(replace(r, normalized_value=converted))
    return tuple(normalized)


def _build_group(bucket: _Bucket, settings: GroupingSettings) -> KPIGroup:
    common_unit = _modal_unit(bucket.records)
    records = _normalize(bucket.records, common_unit)
    values = [r.normalized_value for r in records]

    if settings.aggregation == "mean":
        aggregated = sum(values) / len(values)
    else:
        aggregated = sum(values)

    same_unit = sum(1 for r in records if r.unit.lower() == common_unit.lower())
    unit_ratio = same_unit / len(records)
    non_null_ratio = bucket.non_null / bucket.attempted
    parse_ratio = len(records) / bucket.attempted

    quality = (
        settings.unit_consistency_weight * unit_ratio
        + settings.non_null_weight * non_null_ratio
        + settings.parse_success_weight * parse_ratio
    )

    return KPIGroup(
        kpi_identifier=bucket.identifier,
        records=records,
        aggregated_value=aggregated,
        common_unit=common_unit,
        record_count=len(records),
        value_range=ValueRange(
            min=min(values),
            max=max(values),
            avg=sum(values) / len(values),
        ),
        quality_score=round(max(0.0, min(1.0, quality)), 4),
        unit_consistency=len({r.unit.lower() for r in records}) <= 1,
    )


# ---------------------------------------------------------------------
# Data quality report
# ---------------------------------------------------------------------

def _count_missing(rows: Sequence[Mapping[str, Any]], column_config: ColumnConfig) -> int:
    columns = (column_config.kpi_column, column_config.value_column, column_config.unit_column)
    return sum(1 for row in rows for col in columns if _text(row.get(col)) == "")


def _outliers(groups: Sequence[KPIGroup]) -> List[Dict[str, Any]]:
    found: List[Dict[str, Any]] = []
    for group in groups:
        if group.record_count < 3:
            continue

        mean = group.value_range.avg
        std = math.sqrt(sum((r.normalized_value - mean) ** 2 for r in group.records) / group.record_count)
        threshold = 3 * std

        for record in group.records:
            if abs(record.normalized_value - mean) > threshold:
                found.append({
                    "kpi_id": group.kpi_identifier,
                    "value": record.normalized_value,
                    "reason": f"more than {threshold:.2f} away from the mean",
                })
    return found


def _invalid_values(rows: Sequence[Mapping[str, Any]], column_config: ColumnConfig) -> List[Dict[str, Any]]:
    invalid: List[Dict[str, Any]] = []
    for row in rows:
        raw = row.get(column_config.value_column)
        if _text(raw) == "":
            continue

        kpi_id = _text(row.get(column_config.kpi_column))
        value = parse_numeric_value(raw)
        if value is None:
            invalid.append({"kpi_id": kpi_id, "value": _text(raw), "issue": "not a number"})
        elif value < 0:
            invalid.append({"kpi_id": kpi_id, "value": _text(raw), "issue": "negative value"})
    return invalid


def build_data_quality_report(
    rows: Sequence[Mapping[str, Any]],
    groups: Sequence[KPIGroup],
    column_config: ColumnConfig,
) -> DataQualityReport:
    return DataQualityReport(
        missing_values=_count_missing(rows, column_config),
        unit_inconsistencies=tuple(
            f"{g.kpi_identifier}: mixed units" for g in groups if not g.unit_consistency
        ),
        outliers=tuple(_outliers(groups)),
        duplicates=tuple(
            {"kpi_id": g.kpi_identifier, "count": g.record_count}
            for g in groups
            if g.record_count > 1
        ),
        invalid_values=tuple(_invalid_values(rows, column_config)),
    )


# ---------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------

def group_rows(
    rows: Sequence[Mapping[str, Any]],
    column_config: ColumnConfig,
    *,
    settings: Optional[GroupingSettings] = None,
) -> Union[GroupingResult, EmptyResult]:
    """
    Group uploaded rows by KPI identifier.

    Rows with an empty identifier or an unparsable value are counted as
    rejected. Identifiers are compared case-insensitively; a group keeps
    the first spelling seen and groups come out in first-seen order.
    """
    settings = settings or GroupingSettings()
    if settings.aggregation not in AGGREGATIONS:
        raise ValidationError(f"Unknown aggregation policy: {settings.aggregation!r}")

    _validate(rows, column_config)

    buckets: Dict[str, _Bucket] = {}
    rejected = 0

    for idx, row in enumerate(rows):
        identifier = _text(_cell(row, column_config.kpi_column))
        if not identifier:
            rejected += 1
            continue

        bucket = buckets.setdefault(identifier.lower(), _Bucket(identifier=identifier))
        bucket.attempted += 1

        raw_value = _cell(row, column_config.value_column)
        unit = _text(_cell(row, column_config.unit_column))
        if _text(raw_value) and unit:
            bucket.non_null += 1

        value = parse_numeric_value(raw_value)
        if value is None:
            rejected += 1
            logger.debug("grouping: row %d rejected (value=%r)", idx, raw_value)
            continue

        period = _text(_cell(row, column_config.period_column)) or None
        row_ref = _cell(row, column_config.row_ref_column) if column_config.row_ref_column else idx

        bucket.records.append(
            RawRecord(
                kpi_identifier_raw=identifier,
                value=value,
                unit=unit,
                period=period,
                row_ref=row_ref,
                raw_value=raw_value,
            )
        )

    groups = tuple(_build_group(b, settings) for b in buckets.values() if b.records)
    valid = sum(g.record_count for g in groups)

    stats = GroupingStats(
        total_rows=len(rows),
        valid_rows=valid,
        rejected_rows=rejected,
        unique_kpi_count=len(groups),
    )
    data_quality = build_data_quality_report(rows, groups, column_config)

    logger.info(
        "grouping: %d rows -> %d groups (%d rejected)",
        stats.total_rows, stats.unique_kpi_count, stats.rejected_rows,
    )

    if not groups:
        reason = "No rows supplied" if not rows else "No valid KPI rows found"
        return EmptyResult(stats=stats, data_quality=data_quality, reason=reason)

    return GroupingResult(groups=groups, stats=stats, data_quality=data_quality)


def estimate_category(identifier: str, unit: str = "") -> str:
    """Guess Environment / Social / Governance / Financial from the identifier and unit."""
    ident = (identifier or "").lower()
    unit_l = (unit or "").lower()

    for category, ident_words, unit_words in CATEGORY_KEYWORDS:
        if any(w in ident for w in ident_words) or any(w in unit_l for w in unit_words):
            return category
    return "Unknown"


def _sample_size_band(record_count: int) -> str:
    if record_count >= 5:
        return "high"
    if record_count >= 3:
        return "medium"
    return "low"


def describe_group(group: KPIGroup) -> str:
    """Deterministic descriptive text for a group, fed to the embedding provider."""
    unit_text = f" in {group.common_unit}" if group.common_unit else ""
    consistency = "consistent" if group.unit_consistency else "inconsistent"
    vr = group.value_range

    parts = [
        f"KPI identifier: {group.kpi_identifier}.",
        f"Total aggregated value: {group.aggregated_value}{unit_text}.",
        f"Number of records: {group.record_count}.",
        f"Value statistics: minimum {vr.min:.2f}, maximum {vr.max:.2f}, average {vr.avg:.2f}{unit_text}.",
        f"Unit consistency: {consistency}.",
        f"Data quality assessment: {_sample_size_band(group.record_count)} sample size.",
    ]

    category = estimate_category(group.kpi_identifier, group.common_unit)
    if category != "Unknown":
        parts.append(f"Estimated category: {category}.")

    samples = [
        f"{r.value}{' ' + r.unit if r.unit else ''}" for r in group.records[:3]
    ]
    parts.append(f"Sample values: {', '.join(samples)}.")

    raw_samples = [r.raw_value for r in group.records]
    analysis = analyze_samples(raw_samples)
    value_type = f"Value type: {analysis.data_type}"
    if analysis.unit:
        value_type += f" ({analysis.unit})"
    parts.append(value_type + f". {analysis.summary}.")

    return " ".join(parts)
