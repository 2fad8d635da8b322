# src/esg_mapping/embeddings/cache.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from esg_mapping.core.types import CanonicalKPIDefinition
from esg_mapping.matching.dictionary import KPIDictionary, KPIDictionaryStore

logger = logging.getLogger(__name__)


def l2_normalize(vectors: np.ndarray) -> np.ndarray:
    """Row-wise L2 normalization; zero rows stay zero."""
    norms = np.linalg.norm(vectors, axis=-1, keepdims=True)
    norms[norms == 0] = 1.0
    return vectors / norms


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0:
        return 0.0
    return float(np.dot(va, vb) / denom)


@dataclass(frozen=True)
class EmbeddingSnapshot:
    """
    Immutable view of the dictionary embeddings.

    ``matrix`` row i is the L2-normalized vector of ``definitions[i]``.
    """
    definitions: Tuple[CanonicalKPIDefinition, ...]
    matrix: np.ndarray

    @classmethod
    def empty(cls) -> "EmbeddingSnapshot":
        return cls(definitions=(), matrix=np.zeros((0, 0)))

    @classmethod
    def from_definitions(cls, definitions: Iterable[CanonicalKPIDefinition]) -> "EmbeddingSnapshot":
        embedded = tuple(
            d for d in definitions if d.is_active and d.embedding_vector is not None
        )
        if not embedded:
            return cls.empty()

        matrix = l2_normalize(np.array([d.embedding_vector for d in embedded], dtype=float))
        matrix.setflags(write=False)
        return cls(definitions=embedded, matrix=matrix)

    def __len__(self) -> int:
        return len(self.definitions)

    @property
    def is_empty(self) -> bool:
        return len(self.definitions) == 0

    def similarities(self, query_vector: Sequence[float]) -> np.ndarray:
        """Raw cosine similarity of the query against every definition."""
        if self.is_empty:
            return np.zeros(0)

        query = np.asarray(query_vector, dtype=float)
        if query.shape[-1] != self.matrix.shape[1]:
            raise ValueError(
                f"query dimension {query.shape[-1]} != dictionary dimension {self.matrix.shape[1]}"
            )
        return self.matrix @ l2_normalize(query)


class DictionaryEmbeddingCache:
    """
    Holder of the current EmbeddingSnapshot.

    Readers grab ``snapshot`` once and use it for the whole match; a
    regeneration builds a complete new snapshot and swaps the reference.
    """

    def __init__(self, snapshot: Optional[EmbeddingSnapshot] = None):
        self._snapshot = snapshot or EmbeddingSnapshot.empty()
        self._write_lock = threading.Lock()

    @classmethod
    def from_dictionary(cls, dictionary: KPIDictionary) -> "DictionaryEmbeddingCache":
        return cls(EmbeddingSnapshot.from_definitions(dictionary.active()))

    @property
    def snapshot(self) -> EmbeddingSnapshot:
        return self._snapshot

    def regenerate(
        self,
        dictionary: KPIDictionary,
        embed: Callable[[str], Sequence[float]],
        store: Optional[KPIDictionaryStore] = None,
    ) -> EmbeddingSnapshot:
        """
        Embed every active definition and publish the result as a new snapshot.

        A provider failure propagates and leaves the current snapshot untouched.
        """
        with self._write_lock:
            embedded: List[CanonicalKPIDefinition] = []
            for defn in dictionary.active():
                vector = embed(KPIDictionary.embedding_text(defn))
                embedded.append(defn.with_embedding(vector))
                if store is not None:
                    store.save_embedding(defn.id, vector)

            snapshot = EmbeddingSnapshot.from_definitions(embedded)
            self._snapshot = snapshot

        logger.info("embedding cache: regenerated %d definition vectors", len(snapshot))
        return snapshot
