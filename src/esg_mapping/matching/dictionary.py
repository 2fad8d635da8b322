# src/esg_mapping/matching/dictionary.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from esg_mapping.config import KPI_DICTIONARY_PATH, load_json
from esg_mapping.core.errors import ValidationError
from esg_mapping.core.types import CATEGORIES, CanonicalKPIDefinition

logger = logging.getLogger(__name__)


def definition_from_dict(kpi_id: str, entry: Mapping[str, Any]) -> CanonicalKPIDefinition:
    """Build a definition from one schema entry (JSON shape keyed by KPI id)."""
    category = entry.get("category", "")
    if category not in CATEGORIES:
        raise ValidationError(f"KPI {kpi_id!r} has unknown category {category!r}")

    vector = entry.get("embedding")
    defn = CanonicalKPIDefinition(
        id=kpi_id,
        name=entry.get("name", kpi_id),
        category=category,
        preferred_unit=entry.get("unit", ""),
        aliases=frozenset(entry.get("aliases", []) or []),
        is_active=bool(entry.get("active", True)),
        description=entry.get("description"),
        keywords=tuple(entry.get("keywords", []) or []),
    )
    return defn.with_embedding(vector) if vector else defn


class KPIDictionary:
    """
    In-memory catalog of canonical KPI definitions.

    Definitions keep their insertion order; lookups are by id.
    """

    def __init__(self, definitions: Iterable[CanonicalKPIDefinition] = ()):
        self._by_id: Dict[str, CanonicalKPIDefinition] = {}
        for defn in definitions:
            if defn.id in self._by_id:
                raise ValidationError(f"Duplicate KPI id in dictionary: {defn.id!r}")
            self._by_id[defn.id] = defn

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Mapping[str, Any]]) -> "KPIDictionary":
        return cls(definition_from_dict(kpi_id, entry) for kpi_id, entry in raw.items())

    @classmethod
    def from_json(cls, path: Path = KPI_DICTIONARY_PATH) -> "KPIDictionary":
        return cls.from_mapping(load_json(path))

    def __len__(self) -> int:
        return len(self._by_id)

    def __iter__(self):
        return iter(self._by_id.values())

    def __contains__(self, kpi_id: object) -> bool:
        return kpi_id in self._by_id

    def all(self) -> List[CanonicalKPIDefinition]:
        return list(self._by_id.values())

    def active(self) -> List[CanonicalKPIDefinition]:
        return [d for d in self._by_id.values() if d.is_active]

    def get(self, kpi_id: str) -> Optional[CanonicalKPIDefinition]:
        return self._by_id.get(kpi_id)

    def by_category(self, category: str) -> List[CanonicalKPIDefinition]:
        return [d for d in self.active() if d.category == category]

    def search_by_text(self, query: str) -> List[CanonicalKPIDefinition]:
        """Substring search over name, aliases and keywords (case-insensitive)."""
        q = (query or "").strip().lower()
        if not q:
            return []

        hits = []
        for defn in self.active():
            haystack = [defn.name, defn.id, *defn.aliases, *defn.keywords]
            if any(q in h.lower() for h in haystack):
                hits.append(defn)
        return hits

    @staticmethod
    def embedding_text(defn: CanonicalKPIDefinition) -> str:
        parts = [
            f"KPI: {defn.name} ({defn.id}).",
            f"Category: {defn.category}.",
            f"Unit: {defn.preferred_unit}.",
        ]
        if defn.description:
            parts.append(f"Description: {defn.description}.")
        if defn.aliases:
            parts.append(f"Aliases: {', '.join(sorted(defn.aliases))}.")
        if defn.keywords:
            parts.append(f"Keywords: {', '.join(defn.keywords)}.")
        return " ".join(parts)

    def statistics(self) -> Dict[str, Any]:
        active = self.active()
        by_category = {c: 0 for c in CATEGORIES}
        for d in active:
            by_category[d.category] += 1

        return {
            "total": len(self._by_id),
            "active": len(active),
            "by_category": by_category,
            "with_embeddings": sum(1 for d in active if d.embedding_vector is not None),
        }


# ---------------------------------------------------------------------
# Storage collaborator
# ---------------------------------------------------------------------

class KPIDictionaryStore(Protocol):
    def load_definitions(self) -> List[CanonicalKPIDefinition]:
        ...

    def save_embedding(self, kpi_id: str, vector: Sequence[float]) -> None:
        ...


class JsonDictionaryStore:
    """Reads definitions from the bundled JSON file; written vectors stay in memory."""

    def __init__(self, path: Path = KPI_DICTIONARY_PATH):
        self.path = Path(path)
        self._vectors: Dict[str, List[float]] = {}

    def load_definitions(self) -> List[CanonicalKPIDefinition]:
        raw = load_json(self.path)
        definitions = []
        for kpi_id, entry in raw.items():
            defn = definition_from_dict(kpi_id, entry)
            if kpi_id in self._vectors:
                defn = defn.with_embedding(self._vectors[kpi_id])
            definitions.append(defn)

        logger.info("dictionary: loaded %d KPI definitions from %s", len(definitions), self.path)
        return definitions

    def save_embedding(self, kpi_id: str, vector: Sequence[float]) -> None:
        self._vectors[kpi_id] = [float(v) for v in vector]
