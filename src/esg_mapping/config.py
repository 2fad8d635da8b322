# src/esg_mapping/config.py
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import load_dotenv

from esg_mapping.core.errors import ValidationError

# Load .env as early as possible
load_dotenv()

BASE_DIR = Path(__file__).resolve().parent
SCHEMA_DIR = BASE_DIR / "schemas"

KPI_DICTIONARY_PATH = SCHEMA_DIR / "kpi_dictionary.json"
COMPLIANCE_RULES_PATH = SCHEMA_DIR / "compliance_rules.yaml"
MAPPING_SETTINGS_PATH = SCHEMA_DIR / "mapping_settings.yaml"


def load_json(path: Path):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def load_yaml(path: Path):
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


# ---------------------------------------------------------------------
# Typed settings
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class GroupingSettings:
    aggregation: str = "sum"
    unit_consistency_weight: float = 0.4
    non_null_weight: float = 0.3
    parse_success_weight: float = 0.3


@dataclass(frozen=True)
class BoostSettings:
    unit_match_bonus: float = 0.15
    unit_family_credit: float = 0.8
    data_quality_scale: float = 0.10
    data_quality_cap: float = 0.10
    sample_size_cap: float = 0.08
    sample_size_saturation: int = 10
    value_range_bonus: float = 0.07
    value_range_bands: Dict[str, Tuple[float, float]] = field(
        default_factory=lambda: {
            "Environment": (0.0, 1e9),
            "Social": (0.0, 1e7),
            "Governance": (0.0, 1e5),
            "Financial": (0.0, 1e14),
        }
    )


@dataclass(frozen=True)
class PipelineSettings:
    top_k: int = 3
    min_confidence_threshold: float = 0.6
    max_workers: int = 4
    batch_timeout_s: Optional[float] = 120.0
    item_latency_budget_ms: float = 2000.0
    latency_breach_ratio: float = 0.5


@dataclass(frozen=True)
class EmbeddingSettings:
    model: str = "text-embedding-3-small"
    max_attempts: int = 3
    base_delay_s: float = 1.0
    api_key: Optional[str] = None


def _grouping_settings(raw: Dict[str, Any]) -> GroupingSettings:
    weights = raw.get("quality_weights", {}) or {}
    return GroupingSettings(
        aggregation=str(raw.get("aggregation", "sum")),
        unit_consistency_weight=float(weights.get("unit_consistency", 0.4)),
        non_null_weight=float(weights.get("non_null", 0.3)),
        parse_success_weight=float(weights.get("parse_success", 0.3)),
    )


def _boost_settings(raw: Dict[str, Any]) -> BoostSettings:
    defaults = BoostSettings()
    bands = {
        str(category): (float(bounds[0]), float(bounds[1]))
        for category, bounds in (raw.get("value_range_bands") or {}).items()
    }
    return BoostSettings(
        unit_match_bonus=float(raw.get("unit_match_bonus", defaults.unit_match_bonus)),
        unit_family_credit=float(raw.get("unit_family_credit", defaults.unit_family_credit)),
        data_quality_scale=float(raw.get("data_quality_scale", defaults.data_quality_scale)),
        data_quality_cap=float(raw.get("data_quality_cap", defaults.data_quality_cap)),
        sample_size_cap=float(raw.get("sample_size_cap", defaults.sample_size_cap)),
        sample_size_saturation=int(
            raw.get("sample_size_saturation", defaults.sample_size_saturation)
        ),
        value_range_bonus=float(raw.get("value_range_bonus", defaults.value_range_bonus)),
        value_range_bands=bands or defaults.value_range_bands,
    )


def _pipeline_settings(matching: Dict[str, Any], raw: Dict[str, Any]) -> PipelineSettings:
    top_k = int(matching.get("top_k", 3))
    if top_k < 1:
        raise ValidationError(f"matching.top_k must be >= 1, got {top_k}")

    timeout = raw.get("batch_timeout_s", 120.0)
    return PipelineSettings(
        top_k=top_k,
        min_confidence_threshold=float(matching.get("min_confidence_threshold", 0.6)),
        max_workers=int(os.getenv("ESG_MAX_WORKERS") or raw.get("max_workers", 4)),
        batch_timeout_s=float(timeout) if timeout is not None else None,
        item_latency_budget_ms=float(raw.get("item_latency_budget_ms", 2000.0)),
        latency_breach_ratio=float(raw.get("latency_breach_ratio", 0.5)),
    )


def _embedding_settings(raw: Dict[str, Any]) -> EmbeddingSettings:
    return EmbeddingSettings(
        model=os.getenv("ESG_EMBEDDING_MODEL") or str(raw.get("model", "text-embedding-3-small")),
        max_attempts=int(raw.get("max_attempts", 3)),
        base_delay_s=float(raw.get("base_delay_s", 1.0)),
        api_key=os.getenv("OPENAI_API_KEY"),
    )


class ESGMappingConfig:
    def __init__(self):
        self.kpi_dictionary: Dict[str, Dict[str, Any]] = load_json(KPI_DICTIONARY_PATH)
        self.compliance_rules: Dict[str, Any] = load_yaml(COMPLIANCE_RULES_PATH)

        self.mapping_settings: Dict[str, Any] = load_yaml(MAPPING_SETTINGS_PATH) or {}
        settings = self.mapping_settings
        self.grouping = _grouping_settings(settings.get("grouping", {}) or {})
        self.boosts = _boost_settings(settings.get("boosts", {}) or {})
        self.pipeline = _pipeline_settings(
            settings.get("matching", {}) or {},
            settings.get("pipeline", {}) or {},
        )
        self.embedding = _embedding_settings(settings.get("embedding", {}) or {})


@lru_cache(maxsize=1)
def load_config() -> ESGMappingConfig:
    return ESGMappingConfig()


def setup_logging(level: str = "INFO") -> None:
    """
    Configure root logger. Safe to call multiple times.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


# Run once automatically
setup_logging(os.getenv("ESG_LOG_LEVEL", "INFO"))
