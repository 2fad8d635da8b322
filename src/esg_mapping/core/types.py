# src/esg_mapping/core/types.py

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

CATEGORIES: Tuple[str, ...] = ("Environment", "Social", "Governance", "Financial")
SEVERITIES: Tuple[str, ...] = ("critical", "warning")


# ---------------------------------------------------------------------
# Input side
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class ColumnConfig:
    """Which columns of an uploaded table carry the KPI id, value, unit and period."""
    kpi_column: str = "kpiId"
    value_column: str = "value"
    unit_column: str = "unit"
    period_column: Optional[str] = None
    row_ref_column: Optional[str] = None


@dataclass(frozen=True)
class RawRecord:
    """
    One parsed row.

    ``value`` is None when the cell could not be parsed as a number;
    ``raw_value`` keeps the original cell. ``normalized_value`` is
    ``value`` expressed in the owning group's common unit.
    """
    kpi_identifier_raw: str
    value: Optional[float]
    unit: str
    period: Optional[str] = None
    row_ref: Any = None
    raw_value: Any = None
    normalized_value: Optional[float] = None


@dataclass(frozen=True)
class ValueRange:
    min: float
    max: float
    avg: float


@dataclass(frozen=True)
class KPIGroup:
    kpi_identifier: str
    records: Tuple[RawRecord, ...]
    aggregated_value: float
    common_unit: str
    record_count: int
    value_range: ValueRange
    quality_score: float
    unit_consistency: bool = True

    def __post_init__(self) -> None:
        if self.record_count != len(self.records) or self.record_count < 1:
            raise ValueError(
                f"KPIGroup {self.kpi_identifier!r}: record_count must equal "
                f"len(records) and be >= 1"
            )


@dataclass(frozen=True)
class GroupingStats:
    total_rows: int
    valid_rows: int
    rejected_rows: int
    unique_kpi_count: int


@dataclass(frozen=True)
class DataQualityReport:
    missing_values: int = 0
    unit_inconsistencies: Tuple[str, ...] = ()
    outliers: Tuple[Dict[str, Any], ...] = ()
    duplicates: Tuple[Dict[str, Any], ...] = ()
    invalid_values: Tuple[Dict[str, Any], ...] = ()


@dataclass(frozen=True)
class GroupingResult:
    groups: Tuple[KPIGroup, ...]
    stats: GroupingStats
    data_quality: DataQualityReport = field(default_factory=DataQualityReport)

    is_empty = False


@dataclass(frozen=True)
class EmptyResult:
    """Explicit marker returned when no KPI group could be formed."""
    stats: GroupingStats
    data_quality: DataQualityReport = field(default_factory=DataQualityReport)
    reason: str = "No valid KPI rows found"

    groups: Tuple[KPIGroup, ...] = ()
    is_empty = True


# ---------------------------------------------------------------------
# Sample analysis
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class SampleStatistics:
    count: int = 0
    numeric_count: int = 0
    unique_values: int = 0
    avg_length: float = 0.0


@dataclass(frozen=True)
class SampleAnalysis:
    data_type: str
    confidence: float
    samples: Tuple[str, ...]
    summary: str
    unit: Optional[str] = None
    pattern: Optional[str] = None
    statistics: SampleStatistics = field(default_factory=SampleStatistics)


@dataclass(frozen=True)
class KPIGroupAnalysis:
    kpi_identifier: str
    data_type_analysis: SampleAnalysis
    quality_score: float
    recommendations: Tuple[str, ...]


# ---------------------------------------------------------------------
# Dictionary & matching
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class CanonicalKPIDefinition:
    id: str
    name: str
    category: str
    preferred_unit: str
    aliases: FrozenSet[str] = frozenset()
    is_active: bool = True
    description: Optional[str] = None
    keywords: Tuple[str, ...] = ()
    embedding_vector: Optional[Tuple[float, ...]] = field(default=None, compare=False, repr=False)

    def with_embedding(self, vector) -> "CanonicalKPIDefinition":
        return replace(self, embedding_vector=tuple(float(v) for v in vector))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "unit": self.preferred_unit,
        }


@dataclass(frozen=True)
class SimilarityCandidate:
    kpi_definition: CanonicalKPIDefinition
    raw_similarity: float

    @property
    def similarity(self) -> float:
        """Similarity used for ranking: negative cosine clamped to 0."""
        return max(0.0, self.raw_similarity)


@dataclass(frozen=True)
class ConfidenceBoosts:
    unit_match: float = 0.0
    data_quality: float = 0.0
    sample_size: float = 0.0
    value_range: float = 0.0

    @property
    def total(self) -> float:
        return self.unit_match + self.data_quality + self.sample_size + self.value_range


@dataclass(frozen=True)
class MappingError:
    kind: str  # provider_error | timeout | internal_error
    message: str


@dataclass(frozen=True)
class KPIMapping:
    group: KPIGroup
    best_match: Optional[CanonicalKPIDefinition]
    original_confidence: float
    adjusted_confidence: float
    confidence_boosts: ConfidenceBoosts = field(default_factory=ConfidenceBoosts)
    alternatives: Tuple[SimilarityCandidate, ...] = ()
    candidates: Tuple[SimilarityCandidate, ...] = ()
    error: Optional[MappingError] = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.adjusted_confidence <= 1.0:
            raise ValueError("adjusted_confidence must lie in [0, 1]")

    @classmethod
    def unmapped(cls, group: KPIGroup, error: Optional[MappingError] = None) -> "KPIMapping":
        return cls(
            group=group,
            best_match=None,
            original_confidence=0.0,
            adjusted_confidence=0.0,
            error=error,
        )

    @property
    def status(self) -> str:
        if self.error is not None:
            return "timeout" if self.error.kind == "timeout" else "error"
        return "mapped" if self.best_match is not None else "unmapped"

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly flat view, one row per uploaded KPI identifier."""
        return {
            "kpi_identifier": self.group.kpi_identifier,
            "aggregated_value": self.group.aggregated_value,
            "unit": self.group.common_unit,
            "record_count": self.group.record_count,
            "quality_score": self.group.quality_score,
            "suggested_kpi": self.best_match.to_dict() if self.best_match else None,
            "confidence": self.adjusted_confidence,
            "original_confidence": self.original_confidence,
            "confidence_boosts": asdict(self.confidence_boosts),
            "alternative_suggestions": [
                {"kpi": c.kpi_definition.to_dict(), "confidence": c.similarity}
                for c in self.alternatives
            ],
            "status": self.status,
            "error": asdict(self.error) if self.error else None,
        }


@dataclass(frozen=True)
class ColumnMapping:
    column_name: str
    samples: Tuple[str, ...]
    analysis: SampleAnalysis
    candidates: Tuple[SimilarityCandidate, ...]
    best_match: Optional[CanonicalKPIDefinition]
    confidence: float


# ---------------------------------------------------------------------
# Compliance
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class ComplianceRuleSet:
    standard: str
    required_categories: FrozenSet[str]
    min_confidence_threshold: float
    per_kpi_severity: Mapping[str, str]


@dataclass(frozen=True)
class MissingKPI:
    kpi_id: str
    kpi_name: str
    category: str
    severity: str
    expected_unit: str


@dataclass(frozen=True)
class MappingQuality:
    total_mapped: int = 0
    high_confidence: int = 0
    medium_confidence: int = 0
    low_confidence: int = 0
    unmapped: int = 0


@dataclass(frozen=True)
class ComplianceResult:
    period: str
    standard: str
    total_kpis: int
    missing_kpis: Tuple[MissingKPI, ...]
    critical_missing_count: int
    warning_missing_count: int
    compliance_rate: float
    status: str
    category_scores: Mapping[str, float] = field(default_factory=dict)
    mapping_quality: MappingQuality = field(default_factory=MappingQuality)
    checked_at: Optional[datetime] = None

    def without_timestamp(self) -> "ComplianceResult":
        return replace(self, checked_at=None)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["category_scores"] = dict(self.category_scores)
        data["checked_at"] = self.checked_at.isoformat() if self.checked_at else None
        return data


@dataclass(frozen=True)
class DetailedReport:
    summary: str
    recommendations: Tuple[str, ...]
    next_steps: Tuple[str, ...]


# ---------------------------------------------------------------------
# Pipeline output
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class GroupDiagnostic:
    kpi_identifier: str
    status: str
    latency_ms: float
    error_kind: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class PipelineResult:
    stats: GroupingStats
    data_quality: DataQualityReport
    mappings: List[KPIMapping]
    diagnostics: List[GroupDiagnostic]
    compliance: Optional[ComplianceResult] = None
    report: Optional[DetailedReport] = None
    warnings: List[str] = field(default_factory=list)
    timings_ms: Dict[str, float] = field(default_factory=dict)

    @property
    def mapped(self) -> List[KPIMapping]:
        return [m for m in self.mappings if m.best_match is not None]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stats": asdict(self.stats),
            "data_quality": asdict(self.data_quality),
            "mappings": [m.to_dict() for m in self.mappings],
            "diagnostics": [asdict(d) for d in self.diagnostics],
            "compliance": self.compliance.to_dict() if self.compliance else None,
            "report": asdict(self.report) if self.report else None,
            "warnings": list(self.warnings),
            "timings_ms": dict(self.timings_ms),
        }
