from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional, Sequence

from esg_mapping.core.types import KPIGroupAnalysis, SampleAnalysis, SampleStatistics
from esg_mapping.utils.numeric_parser import CURRENCY_SYMBOLS, looks_numeric

logger = logging.getLogger(__name__)

MAX_SAMPLES = 10

BOOLEAN_TOKENS = frozenset(
    ["true", "false", "yes", "no", "1", "0", "はい", "いいえ", "on", "off"]
)

DATE_PATTERNS = [
    re.compile(r"^\d{4}-\d{2}-\d{2}$"),            # 2024-01-01
    re.compile(r"^\d{2}/\d{2}/\d{4}$"),            # 01/01/2024
    re.compile(r"^\d{4}/\d{2}/\d{2}$"),            # 2024/01/01
    re.compile(r"^\d{2}-\d{2}-\d{4}$"),            # 01-01-2024
    re.compile(r"^\d{4}年\d{1,2}月\d{1,2}日$"),    # 2024年1月1日
]

_CURRENCY_RE = re.compile(f"[{re.escape(CURRENCY_SYMBOLS)}]")
_JAPANESE_YEAR_RE = re.compile(r"^\d{4}年")

# Acceptance thresholds, checked in this order
BOOLEAN_THRESHOLD = 0.8
DATE_THRESHOLD = 0.7
NUMERIC_THRESHOLD = 0.7
TEXT_CONFIDENCE = 0.6


def _clean_samples(samples: Iterable[object]) -> List[str]:
    cleaned = [str(s).strip() for s in samples if s is not None and str(s).strip() != ""]
    return cleaned[:MAX_SAMPLES]


def _statistics(samples: Sequence[str]) -> SampleStatistics:
    avg_length = sum(len(s) for s in samples) / len(samples)
    return SampleStatistics(
        count=len(samples),
        numeric_count=sum(1 for s in samples if looks_numeric(s)),
        unique_values=len(set(samples)),
        avg_length=round(avg_length, 2),
    )


# ---------------------------------------------------------------------
# Individual classifiers
# ---------------------------------------------------------------------

def _analyze_booleans(samples: Sequence[str]) -> Optional[SampleAnalysis]:
    bool_samples = [s for s in samples if s.lower() in BOOLEAN_TOKENS]
    confidence = len(bool_samples) / len(samples)
    if confidence < BOOLEAN_THRESHOLD:
        return None

    return SampleAnalysis(
        data_type="boolean",
        confidence=confidence,
        samples=tuple(bool_samples),
        summary=f"Boolean values ({len(bool_samples)}/{len(samples)})",
        pattern="true_false",
    )


def _is_date(sample: str) -> bool:
    # Bare digit runs (counts, years, ids) are never dates
    if sample.isdigit():
        return False
    return any(p.match(sample) for p in DATE_PATTERNS)


def _analyze_dates(samples: Sequence[str]) -> Optional[SampleAnalysis]:
    date_samples = [s for s in samples if _is_date(s)]
    confidence = len(date_samples) / len(samples)
    if confidence < DATE_THRESHOLD:
        return None

    pattern = "iso_date"
    if any(DATE_PATTERNS[1].match(s) for s in samples):
        pattern = "mm_dd_yyyy"
    elif any(_JAPANESE_YEAR_RE.match(s) for s in samples):
        pattern = "japanese_date"

    return SampleAnalysis(
        data_type="date",
        confidence=confidence,
        samples=tuple(date_samples),
        summary=f"Date values with {pattern} pattern ({len(date_samples)}/{len(samples)})",
        pattern=pattern,
    )


def _analyze_numbers(samples: Sequence[str]) -> Optional[SampleAnalysis]:
    number_samples = [s for s in samples if looks_numeric(s)]
    confidence = len(number_samples) / len(samples)
    if confidence < NUMERIC_THRESHOLD:
        return None

    total = len(samples)
    ratio = f"({len(number_samples)}/{total})"

    percentage_count = sum(1 for s in samples if "%" in s)
    if percentage_count / total > 0.5:
        return SampleAnalysis(
            data_type="percentage",
            confidence=confidence,
            samples=tuple(number_samples),
            summary=f"Percentage values {ratio}",
            unit="%",
            pattern="percentage",
        )

    currency_hits = [s for s in samples if _CURRENCY_RE.search(s)]
    if len(currency_hits) / total > 0.3:
        symbol = _CURRENCY_RE.search(currency_hits[0]).group(0)
        return SampleAnalysis(
            data_type="currency",
            confidence=confidence,
            samples=tuple(number_samples),
            summary=f"Currency values in {symbol} {ratio}",
            unit=symbol,
            pattern="currency",
        )

    return SampleAnalysis(
        data_type="number",
        confidence=confidence,
        samples=tuple(number_samples),
        summary=f"Numeric values {ratio}",
        pattern="decimal",
    )


# ---------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------

def analyze_samples(samples: Iterable[object]) -> SampleAnalysis:
    """
    Classify up to 10 non-empty samples of a column.

    Tests run in a fixed order (boolean, date, numeric) so that the more
    specific patterns are not shadowed by loose numeric parsing ("1"/"0"
    are booleans, "2024-01-01" is a date). Falls back to text at 0.6.
    """
    clean = _clean_samples(samples)

    if not clean:
        return SampleAnalysis(
            data_type="text",
            confidence=0.0,
            samples=(),
            summary="No valid samples found",
        )

    statistics = _statistics(clean)

    for classifier in (_analyze_booleans, _analyze_dates, _analyze_numbers):
        result = classifier(clean)
        if result is not None:
            logger.debug("analyze_samples: %s (confidence=%.2f)", result.data_type, result.confidence)
            return _with_statistics(result, statistics)

    return SampleAnalysis(
        data_type="text",
        confidence=TEXT_CONFIDENCE,
        samples=tuple(clean),
        summary=f"Text data with {len(clean)} samples",
        pattern="free_text",
        statistics=statistics,
    )


def _with_statistics(analysis: SampleAnalysis, statistics: SampleStatistics) -> SampleAnalysis:
    return SampleAnalysis(
        data_type=analysis.data_type,
        confidence=analysis.confidence,
        samples=analysis.samples,
        summary=analysis.summary,
        unit=analysis.unit,
        pattern=analysis.pattern,
        statistics=statistics,
    )


def create_embedding_summary(analysis: SampleAnalysis, column_name: str) -> str:
    """Deterministic description of a column, used as embedding input."""
    parts = [f'Column "{column_name}" contains {analysis.data_type} data.']

    if analysis.unit:
        parts.append(f"Unit: {analysis.unit}.")
    if analysis.pattern:
        parts.append(f"Pattern: {analysis.pattern}.")

    parts.append(f"Summary: {analysis.summary}.")

    stats = analysis.statistics
    parts.append(
        f"Statistics: {stats.count} total samples, "
        f"{stats.unique_values} unique values, "
        f"{stats.numeric_count} numeric values."
    )

    if analysis.samples:
        parts.append(f"Examples: {', '.join(analysis.samples[:3])}")

    return " ".join(parts)


def analyze_kpi_group(
    kpi_identifier: str,
    values: Sequence[object],
    units: Sequence[object],
    periods: Sequence[object],
) -> KPIGroupAnalysis:
    """
    Sample-based quality view of one KPI group.

    Score weights: value type confidence 50%, unit consistency 30%,
    period format confidence 20%.
    """
    value_analysis = analyze_samples(values)
    unit_analysis = analyze_samples(units)
    period_analysis = analyze_samples(periods)

    score = value_analysis.confidence * 0.5
    if unit_analysis.statistics.unique_values <= 2:
        score += 0.3
    else:
        score += unit_analysis.confidence * 0.3
    score += period_analysis.confidence * 0.2

    recommendations: List[str] = []
    if value_analysis.confidence < 0.8:
        recommendations.append(f"{kpi_identifier}: use a consistent value format")
    if unit_analysis.statistics.unique_values > 2:
        recommendations.append(f"{kpi_identifier}: use a single unit")
    if period_analysis.confidence < 0.7:
        recommendations.append(f"{kpi_identifier}: use a consistent period format")
    if value_analysis.statistics.count < 3:
        recommendations.append(f"{kpi_identifier}: provide at least 3 data points")

    return KPIGroupAnalysis(
        kpi_identifier=kpi_identifier,
        data_type_analysis=value_analysis,
        quality_score=round(score, 2),
        recommendations=tuple(recommendations),
    )
