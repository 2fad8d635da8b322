# src/esg_mapping/compliance/store.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from esg_mapping.compliance.evaluator import evaluate_compliance, parse_period
from esg_mapping.core.errors import PersistenceError, ValidationError
from esg_mapping.core.types import ComplianceResult, ComplianceRuleSet, KPIMapping
from esg_mapping.matching.dictionary import KPIDictionary

logger = logging.getLogger(__name__)


class ComplianceStore(Protocol):
    def get(self, period: str, standard: str) -> Optional[ComplianceResult]:
        ...

    def save(self, result: ComplianceResult) -> None:
        ...

    def history(self, standard: str, limit: int = 10) -> List[ComplianceResult]:
        ...


class InMemoryComplianceStore:
    """
    Results keyed by (period, standard); the latest save wins for ``get``.

    Every save is also appended to a per-process history so earlier
    checks of the same standard stay visible.
    """

    def __init__(self):
        self._results: Dict[Tuple[str, str], ComplianceResult] = {}
        self._history: List[ComplianceResult] = []
        self._lock = threading.Lock()

    def get(self, period: str, standard: str) -> Optional[ComplianceResult]:
        with self._lock:
            return self._results.get((period, standard))

    def save(self, result: ComplianceResult) -> None:
        with self._lock:
            self._results[(result.period, result.standard)] = result
            self._history.append(result)

    def history(self, standard: str, limit: int = 10) -> List[ComplianceResult]:
        """Most recent results for ``standard``, newest first."""
        if limit < 1:
            raise ValidationError(f"limit must be >= 1, got {limit}")
        with self._lock:
            matching = [r for r in reversed(self._history) if r.standard == standard]
        return matching[:limit]

    def __len__(self) -> int:
        return len(self._results)


@dataclass
class ComplianceOutcome:
    result: ComplianceResult
    computed: bool
    persisted: bool
    warnings: List[str] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ComplianceService:
    """
    Get-or-compute front of the evaluator.

    Storage failures never lose a computed result: a failing read falls
    back to computing, a failing write is reported as a warning.
    """

    def __init__(
        self,
        store: ComplianceStore,
        *,
        dictionary: Optional[KPIDictionary] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.dictionary = dictionary
        self.clock = clock

    def get_or_compute(
        self,
        period: str,
        mappings: Sequence[KPIMapping],
        rule_set: ComplianceRuleSet,
        *,
        force: bool = False,
    ) -> ComplianceOutcome:
        parse_period(period)
        warnings: List[str] = []

        if not force:
            try:
                cached = self.store.get(period, rule_set.standard)
            except PersistenceError as exc:
                logger.warning("compliance store: read failed for %s/%s: %s", period, rule_set.standard, exc)
                warnings.append("Stored compliance result could not be read; recomputed")
                cached = None

            if cached is not None:
                logger.info("compliance store: using stored result for %s/%s", period, rule_set.standard)
                return ComplianceOutcome(result=cached, computed=False, persisted=True, warnings=warnings)

        result = evaluate_compliance(
            mappings,
            rule_set,
            dictionary=self.dictionary,
            period=period,
            checked_at=self.clock(),
        )

        persisted = True
        try:
            self.store.save(result)
        except PersistenceError as exc:
            logger.error("compliance store: save failed for %s/%s: %s", period, rule_set.standard, exc)
            warnings.append("Compliance result was computed but could not be saved")
            persisted = False

        return ComplianceOutcome(result=result, computed=True, persisted=persisted, warnings=warnings)

    def lookup(self, period: str, standard: str) -> Optional[ComplianceResult]:
        """Stored result for (period, standard) without recomputing."""
        parse_period(period)
        return self.store.get(period, standard)

    def history(self, standard: str, limit: int = 10) -> List[ComplianceResult]:
        return self.store.history(standard, limit)
