# src/esg_mapping/matching/matcher.py
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

import numpy as np

from esg_mapping.analysis.grouping import describe_group
from esg_mapping.analysis.sample_analyzer import analyze_samples, create_embedding_summary
from esg_mapping.config import BoostSettings
from esg_mapping.core.errors import ProviderError, ValidationError
from esg_mapping.core.types import (
    ColumnMapping,
    KPIGroup,
    KPIMapping,
    MappingError,
    SimilarityCandidate,
)
from esg_mapping.embeddings.cache import DictionaryEmbeddingCache, EmbeddingSnapshot
from esg_mapping.embeddings.provider import EmbeddingFunction
from esg_mapping.matching.boosting import adjust_confidence, compute_boosts
from esg_mapping.matching.dictionary import KPIDictionary

logger = logging.getLogger(__name__)


def rank_candidates(snapshot: EmbeddingSnapshot, query_vector: Sequence[float], top_k: int) -> List[SimilarityCandidate]:
    """Top-K definitions by cosine similarity, ties kept in dictionary order."""
    if snapshot.is_empty or top_k <= 0:
        return []

    sims = snapshot.similarities(query_vector)
    order = np.argsort(-sims, kind="stable")[:top_k]
    return [
        SimilarityCandidate(kpi_definition=snapshot.definitions[i], raw_similarity=float(sims[i]))
        for i in order
    ]


class KPIMatcher:
    """
    Maps KPI groups (or bare columns) onto canonical KPI definitions.

    The matcher never mutates the cache; each call reads one snapshot.
    """

    def __init__(
        self,
        dictionary: KPIDictionary,
        cache: DictionaryEmbeddingCache,
        embed: EmbeddingFunction,
        boost_settings: Optional[BoostSettings] = None,
        *,
        top_k: int = 3,
        min_confidence_threshold: float = 0.6,
    ):
        self.dictionary = dictionary
        self.cache = cache
        self.embed = embed
        self.boost_settings = boost_settings or BoostSettings()
        if top_k < 1:
            raise ValidationError(f"top_k must be >= 1, got {top_k}")
        self.top_k = top_k
        self.min_confidence_threshold = min_confidence_threshold

    # ------------------------------------------------------------------
    # Group matching
    # ------------------------------------------------------------------

    def match_group(self, group: KPIGroup, min_confidence_threshold: Optional[float] = None) -> KPIMapping:
        threshold = self.min_confidence_threshold if min_confidence_threshold is None else min_confidence_threshold
        snapshot = self.cache.snapshot

        if snapshot.is_empty:
            logger.debug("matcher: no dictionary embeddings; '%s' left unmapped", group.kpi_identifier)
            return KPIMapping.unmapped(group)

        text = describe_group(group)
        try:
            vector = self.embed(text)
        except ProviderError as exc:
            logger.warning(
                "matcher: embedding failed for '%s': %r",
                group.kpi_identifier, exc.__cause__ or exc,
            )
            return KPIMapping.unmapped(group, MappingError(kind="provider_error", message=str(exc)))

        candidates = rank_candidates(snapshot, vector, self.top_k)
        best = candidates[0]

        original = best.similarity
        boosts = compute_boosts(group, best.kpi_definition, self.boost_settings)
        adjusted = adjust_confidence(original, boosts)

        best_match = best.kpi_definition if adjusted >= threshold else None
        if best_match is None:
            logger.info(
                "matcher: '%s' below threshold (%.3f < %.3f); needs manual review",
                group.kpi_identifier, adjusted, threshold,
            )

        return KPIMapping(
            group=group,
            best_match=best_match,
            original_confidence=original,
            adjusted_confidence=adjusted,
            confidence_boosts=boosts,
            alternatives=tuple(candidates[1:]),
            candidates=tuple(candidates),
        )

    # ------------------------------------------------------------------
    # Column matching / search
    # ------------------------------------------------------------------

    def match_column(self, column_name: str, samples: Sequence[object] = ()) -> ColumnMapping:
        """Match a bare column header plus a few sample cells; no boosts apply."""
        analysis = analyze_samples(samples)
        text = create_embedding_summary(analysis, column_name)

        snapshot = self.cache.snapshot
        candidates = [] if snapshot.is_empty else rank_candidates(snapshot, self.embed(text), self.top_k)

        confidence = candidates[0].similarity if candidates else 0.0
        best_match = candidates[0].kpi_definition if candidates and confidence >= self.min_confidence_threshold else None

        return ColumnMapping(
            column_name=column_name,
            samples=analysis.samples,
            analysis=analysis,
            candidates=tuple(candidates),
            best_match=best_match,
            confidence=confidence,
        )

    def hybrid_search(
        self,
        query: str,
        vector_weight: float = 0.7,
        text_weight: float = 0.3,
        limit: int = 10,
    ) -> List[SimilarityCandidate]:
        """
        Blend rank-based text search with vector similarity.

        Text hits score ``1 - rank / len(hits)``; a definition found by both
        gets ``text * text_weight + vector * vector_weight``.
        """
        text_hits = self.dictionary.search_by_text(query)
        text_scores: Dict[str, float] = {
            d.id: 1.0 - (i / len(text_hits)) for i, d in enumerate(text_hits)
        }

        snapshot = self.cache.snapshot
        vector_scores: Dict[str, float] = {}
        if not snapshot.is_empty:
            sims = snapshot.similarities(self.embed(query))
            vector_scores = {
                d.id: max(0.0, float(s)) for d, s in zip(snapshot.definitions, sims)
            }

        results = []
        for defn in self.dictionary.active():
            if defn.id not in text_scores and defn.id not in vector_scores:
                continue
            score = text_scores.get(defn.id, 0.0) * text_weight + vector_scores.get(defn.id, 0.0) * vector_weight
            results.append(SimilarityCandidate(kpi_definition=defn, raw_similarity=score))

        results.sort(key=lambda c: c.raw_similarity, reverse=True)
        return results[:limit]
