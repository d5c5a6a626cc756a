"""Merges skip-path and validated outcomes into the final batch result."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from packages.hybrid_validation.cache import TieredCache
from packages.schema.models import BatchSummary, CacheStats, EnhancedFinding, Verdict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchResult:
    findings: List[EnhancedFinding]
    excluded: List[EnhancedFinding] = field(default_factory=list)
    summary: BatchSummary = field(default_factory=BatchSummary)


class ResultAggregator:
    def __init__(self, cache: Optional[TieredCache] = None) -> None:
        self._cache = cache

    def merge(
        self,
        skipped: Sequence[EnhancedFinding],
        validated: Sequence[EnhancedFinding],
    ) -> BatchResult:
        kept: List[EnhancedFinding] = []
        excluded: List[EnhancedFinding] = []
        counts = {verdict: 0 for verdict in Verdict}

        for outcome in list(validated) + list(skipped):
            counts[outcome.verdict] += 1
            (excluded if outcome.verdict.excluded else kept).append(outcome)

        summary = BatchSummary(
            submitted=len(skipped) + len(validated),
            skipped=counts[Verdict.SKIPPED],
            confirmed=counts[Verdict.CONFIRMED],
            rejected=counts[Verdict.REJECTED],
            local_filtered=counts[Verdict.LOCAL_FILTERED],
            failed=counts[Verdict.FAILED],
        )
        logger.info(
            "AI enhancement complete: %d validated, %d filtered (%d rejected, %d local), %d errors, %d skipped",
            summary.validated,
            summary.filtered,
            summary.rejected,
            summary.local_filtered,
            summary.errors,
            summary.skipped,
        )
        logger.info("Total output findings: %d", len(kept))
        return BatchResult(findings=kept, excluded=excluded, summary=summary)

    def cache_stats(self) -> CacheStats:
        if self._cache is None:
            return CacheStats()
        return self._cache.stats()

    def log_cache_stats(self) -> None:
        logger.info("AI cache statistics: %s", self.cache_stats())


__all__ = ["BatchResult", "ResultAggregator"]
