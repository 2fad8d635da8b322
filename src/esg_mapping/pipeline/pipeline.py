# src/esg_mapping/pipeline/pipeline.py
from __future__ import annotations

import logging
import time
from functools import lru_cache
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from esg_mapping.analysis.grouping import group_rows
from esg_mapping.compliance.evaluator import evaluate_compliance
from esg_mapping.compliance.notifications import Notifier, build_compliance_events, dispatch_events
from esg_mapping.compliance.report import generate_report as build_report
from esg_mapping.compliance.store import ComplianceService, InMemoryComplianceStore
from esg_mapping.config import ESGMappingConfig, GroupingSettings, PipelineSettings, load_config
from esg_mapping.core.errors import ProviderError
from esg_mapping.core.types import (
    ColumnConfig,
    ComplianceRuleSet,
    GroupDiagnostic,
    KPIGroup,
    KPIMapping,
    MappingError,
    PipelineResult,
)
from esg_mapping.embeddings.cache import DictionaryEmbeddingCache
from esg_mapping.embeddings.provider import EmbeddingFunction, OpenAIEmbeddingProvider
from esg_mapping.matching.dictionary import JsonDictionaryStore, KPIDictionary, KPIDictionaryStore
from esg_mapping.matching.matcher import KPIMatcher

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "Internal error while matching this KPI"
TIMEOUT_MESSAGE = "Matching did not finish within the batch timeout"


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


def _diagnostic(mapping: KPIMapping, latency_ms: float) -> GroupDiagnostic:
    return GroupDiagnostic(
        kpi_identifier=mapping.group.kpi_identifier,
        status=mapping.status,
        latency_ms=latency_ms,
        error_kind=mapping.error.kind if mapping.error else None,
        error_message=mapping.error.message if mapping.error else None,
    )


def _match_one(matcher: KPIMatcher, group: KPIGroup, threshold: float) -> Tuple[KPIMapping, float]:
    """Run one match; any failure stays inside this group's mapping."""
    start = time.perf_counter()
    try:
        mapping = matcher.match_group(group, threshold)
    except Exception:  # noqa: BLE001
        logger.exception("pipeline: matching '%s' failed", group.kpi_identifier)
        mapping = KPIMapping.unmapped(
            group, MappingError(kind="internal_error", message=INTERNAL_ERROR_MESSAGE)
        )
    return mapping, _elapsed_ms(start)


# ----------------------------------------------------------
# Batch matching
#
# Results land in an index-addressed list, so output order always
# follows group order regardless of completion order.
# ----------------------------------------------------------

def match_groups_with_diagnostics(
    groups: Sequence[KPIGroup],
    matcher: KPIMatcher,
    *,
    min_confidence_threshold: float = 0.6,
    max_workers: int = 4,
    batch_timeout_s: Optional[float] = None,
) -> Tuple[List[KPIMapping], List[GroupDiagnostic]]:
    if not groups:
        return [], []

    mappings: List[Optional[KPIMapping]] = [None] * len(groups)
    diagnostics: List[Optional[GroupDiagnostic]] = [None] * len(groups)

    batch_start = time.perf_counter()
    executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="kpi-match")
    try:
        futures = {
            executor.submit(_match_one, matcher, group, min_confidence_threshold): idx
            for idx, group in enumerate(groups)
        }
        done, not_done = wait(futures, timeout=batch_timeout_s)

        for future in done:
            idx = futures[future]
            mapping, latency = future.result()
            mappings[idx] = mapping
            diagnostics[idx] = _diagnostic(mapping, latency)

        if not_done:
            logger.warning(
                "pipeline: batch timeout after %.1fs; %d of %d groups unfinished",
                batch_timeout_s, len(not_done), len(groups),
            )
        for future in not_done:
            future.cancel()
            idx = futures[future]
            mapping = KPIMapping.unmapped(
                groups[idx], MappingError(kind="timeout", message=TIMEOUT_MESSAGE)
            )
            mappings[idx] = mapping
            diagnostics[idx] = _diagnostic(mapping, _elapsed_ms(batch_start))
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    return list(mappings), list(diagnostics)


def map_kpi_groups(
    groups: Sequence[KPIGroup],
    matcher: KPIMatcher,
    *,
    min_confidence_threshold: float = 0.6,
    max_workers: int = 4,
    batch_timeout_s: Optional[float] = None,
) -> List[KPIMapping]:
    """
    Match every group in parallel. Returns one KPIMapping per group, in
    group order; provider failures, internal errors and timeouts are
    carried on the affected mapping only.
    """
    mappings, _ = match_groups_with_diagnostics(
        groups,
        matcher,
        min_confidence_threshold=min_confidence_threshold,
        max_workers=max_workers,
        batch_timeout_s=batch_timeout_s,
    )
    return mappings


def latency_warning(
    diagnostics: Sequence[GroupDiagnostic],
    budget_ms: float,
    breach_ratio: float,
) -> Optional[str]:
    if not diagnostics:
        return None

    over = sum(1 for d in diagnostics if d.latency_ms > budget_ms)
    if over / len(diagnostics) > breach_ratio:
        return f"{over} of {len(diagnostics)} KPI groups exceeded the {budget_ms:.0f} ms latency budget"
    return None


# ----------------------------------------------------------
# Main Pipeline
# ----------------------------------------------------------
class KPIMappingPipeline:
    """
    rows -> groups -> parallel semantic matching -> compliance -> report
    """

    def __init__(
        self,
        matcher: KPIMatcher,
        settings: Optional[PipelineSettings] = None,
        compliance_service: Optional[ComplianceService] = None,
        notifier: Optional[Notifier] = None,
        *,
        grouping_settings: Optional[GroupingSettings] = None,
    ):
        self.matcher = matcher
        self.settings = settings or PipelineSettings()
        self.compliance_service = compliance_service
        self.notifier = notifier
        self.grouping_settings = grouping_settings or GroupingSettings()

    def run(
        self,
        rows: Sequence[Mapping[str, Any]],
        column_config: ColumnConfig,
        rule_set: Optional[ComplianceRuleSet] = None,
        *,
        period: str = "",
        generate_report: bool = True,
    ) -> PipelineResult:
        timings = {}

        # --------------------------------------------------
        # 1) Grouping (validation errors propagate)
        # --------------------------------------------------
        start = time.perf_counter()
        grouping = group_rows(rows, column_config, settings=self.grouping_settings)
        timings["grouping"] = _elapsed_ms(start)

        result = PipelineResult(
            stats=grouping.stats,
            data_quality=grouping.data_quality,
            mappings=[],
            diagnostics=[],
            timings_ms=timings,
        )

        if grouping.is_empty:
            logger.info("pipeline: %s", grouping.reason)
            result.warnings.append(grouping.reason)

        # --------------------------------------------------
        # 2) Semantic matching
        # --------------------------------------------------
        # A rule set carries its own acceptance threshold
        threshold = (
            rule_set.min_confidence_threshold
            if rule_set is not None
            else self.settings.min_confidence_threshold
        )
        start = time.perf_counter()
        mappings, diagnostics = match_groups_with_diagnostics(
            grouping.groups,
            self.matcher,
            min_confidence_threshold=threshold,
            max_workers=self.settings.max_workers,
            batch_timeout_s=self.settings.batch_timeout_s,
        )
        timings["matching"] = _elapsed_ms(start)
        result.mappings = mappings
        result.diagnostics = diagnostics

        failed = sum(1 for d in diagnostics if d.error_kind)
        if failed:
            result.warnings.append(f"{failed} of {len(diagnostics)} KPI groups could not be matched")

        breach = latency_warning(
            diagnostics,
            self.settings.item_latency_budget_ms,
            self.settings.latency_breach_ratio,
        )
        if breach:
            logger.warning("pipeline: %s", breach)
            result.warnings.append(breach)

        # --------------------------------------------------
        # 3) Compliance + report
        # --------------------------------------------------
        if rule_set is not None:
            start = time.perf_counter()
            if self.compliance_service is not None and period:
                outcome = self.compliance_service.get_or_compute(period, mappings, rule_set, force=True)
                result.compliance = outcome.result
                result.warnings.extend(outcome.warnings)
            else:
                result.compliance = evaluate_compliance(
                    mappings,
                    rule_set,
                    dictionary=self.matcher.dictionary,
                    period=period,
                    checked_at=datetime.now(timezone.utc),
                )
            timings["compliance"] = _elapsed_ms(start)

            if self.notifier is not None:
                events = build_compliance_events(result.compliance)
                result.warnings.extend(dispatch_events(events, self.notifier))

            if generate_report:
                result.report = build_report(result.compliance)

        logger.info(
            "pipeline: %d groups, %d mapped, %d warnings",
            len(mappings), len(result.mapped), len(result.warnings),
        )
        return result


# ----------------------------------------------------------
# Composition root
# ----------------------------------------------------------

def build_pipeline(
    config: Optional[ESGMappingConfig] = None,
    *,
    embed: Optional[EmbeddingFunction] = None,
    dictionary: Optional[KPIDictionary] = None,
    store: Optional[KPIDictionaryStore] = None,
    cache: Optional[DictionaryEmbeddingCache] = None,
    compliance_service: Optional[ComplianceService] = None,
    notifier: Optional[Notifier] = None,
) -> KPIMappingPipeline:
    """
    Wire dictionary, embedding cache, provider, matcher and compliance
    service into a ready pipeline.

    Without an explicit dictionary the definitions come from ``store``
    (the bundled JSON by default). The cache is seeded from stored
    vectors; the provider is only called when some active definition
    has none, and fresh vectors are written back to ``store``.
    """
    cfg = config or load_config()
    if dictionary is None:
        store = store or JsonDictionaryStore()
        dictionary = KPIDictionary(store.load_definitions())

    if embed is None:
        embed = OpenAIEmbeddingProvider(
            model=cfg.embedding.model,
            api_key=cfg.embedding.api_key,
            max_attempts=cfg.embedding.max_attempts,
            base_delay=cfg.embedding.base_delay_s,
        )

    cache = cache or DictionaryEmbeddingCache.from_dictionary(dictionary)
    if len(cache.snapshot) < len(dictionary.active()):
        try:
            cache.regenerate(dictionary, embed, store=store)
        except ProviderError as exc:
            logger.error("pipeline: dictionary embeddings unavailable, every KPI will be unmapped: %s", exc)
    else:
        logger.info("pipeline: using %d stored dictionary vectors", len(cache.snapshot))

    matcher = KPIMatcher(
        dictionary,
        cache,
        embed,
        cfg.boosts,
        top_k=cfg.pipeline.top_k,
        min_confidence_threshold=cfg.pipeline.min_confidence_threshold,
    )

    if compliance_service is None:
        compliance_service = ComplianceService(InMemoryComplianceStore(), dictionary=dictionary)

    return KPIMappingPipeline(
        matcher,
        cfg.pipeline,
        compliance_service,
        notifier,
        grouping_settings=cfg.grouping,
    )


@lru_cache(maxsize=1)
def default_pipeline() -> KPIMappingPipeline:
    """Process-wide pipeline; dictionary vectors are embedded at most once."""
    return build_pipeline()


# Convenience API
def run_pipeline(
    rows: Sequence[Mapping[str, Any]],
    column_config: ColumnConfig,
    rule_set: Optional[ComplianceRuleSet] = None,
    *,
    pipeline: Optional[KPIMappingPipeline] = None,
    **kwargs: Any,
) -> PipelineResult:
    return (pipeline or default_pipeline()).run(rows, column_config, rule_set, **kwargs)
