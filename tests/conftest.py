# tests/conftest.py
import re
from typing import List, Optional

import pytest

from esg_mapping.analysis.grouping import group_rows
from esg_mapping.core.errors import ProviderError
from esg_mapping.core.types import ColumnConfig, KPIMapping, SimilarityCandidate
from esg_mapping.embeddings.cache import DictionaryEmbeddingCache
from esg_mapping.matching.dictionary import KPIDictionary
from esg_mapping.matching.matcher import KPIMatcher


class KeywordEmbedding:
    """
    Deterministic stand-in for the embedding provider.

    One dimension per KPI id plus a bias dimension that is set whenever at
    least one id occurs in the text. A text naming exactly one id has cosine
    1.0 with that KPI's definition text and 0.5 with every other one; a text
    naming no id embeds to the zero vector.
    """

    def __init__(self, kpi_ids: List[str], fail_marker: Optional[str] = None):
        self.kpi_ids = list(kpi_ids)
        self.patterns = [re.compile(rf"(?<![A-Z0-9_]){re.escape(i)}(?![A-Z0-9_])") for i in self.kpi_ids]
        self.fail_marker = fail_marker
        self.calls = 0

    def __call__(self, text: str) -> List[float]:
        self.calls += 1
        if self.fail_marker and self.fail_marker in text:
            raise ProviderError()

        hits = [1.0 if p.search(text) else 0.0 for p in self.patterns]
        bias = 1.0 if any(hits) else 0.0
        return hits + [bias]


COLUMNS = ColumnConfig(kpi_column="kpiId", value_column="value", unit_column="unit")


def rows_for(identifier, values, unit):
    return [{"kpiId": identifier, "value": v, "unit": unit} for v in values]


def make_group(identifier, values, unit):
    result = group_rows(rows_for(identifier, values, unit), COLUMNS)
    return result.groups[0]


def make_mapping(dictionary, kpi_id, confidence=0.9, error=None, identifier=None):
    defn = dictionary.get(kpi_id)
    group = make_group(identifier or kpi_id, ["1"], defn.preferred_unit)
    return KPIMapping(
        group=group,
        best_match=defn,
        original_confidence=confidence,
        adjusted_confidence=confidence,
        candidates=(SimilarityCandidate(kpi_definition=defn, raw_similarity=confidence),),
        error=error,
    )


@pytest.fixture
def dictionary():
    return KPIDictionary.from_json()


@pytest.fixture
def fake_embed(dictionary):
    return KeywordEmbedding([d.id for d in dictionary.all()])


@pytest.fixture
def cache(dictionary, fake_embed):
    c = DictionaryEmbeddingCache()
    c.regenerate(dictionary, fake_embed)
    return c


@pytest.fixture
def matcher(dictionary, cache, fake_embed):
    return KPIMatcher(dictionary, cache, fake_embed)
