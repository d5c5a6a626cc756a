"""Hybrid validation facade: wires settings into a ready orchestrator."""
from __future__ import annotations

import logging
from typing import Optional

from packages.hybrid_validation.aggregator import ResultAggregator
from packages.hybrid_validation.cache import TieredCache
from packages.hybrid_validation.cached_client import CachedCompletionClient
from packages.hybrid_validation.client import (
    CompletionClient,
    CompletionTransport,
    HttpCompletionTransport,
)
from packages.hybrid_validation.config import Settings
from packages.hybrid_validation.context import CodeContextExtractor
from packages.hybrid_validation.orchestrator import ValidationOrchestrator
from packages.hybrid_validation.ratelimit import RateLimiter
from packages.hybrid_validation.triage import TriageClassifier

logger = logging.getLogger(__name__)


def build_cache(settings: Settings) -> TieredCache:
    return TieredCache(settings.cache)


def build_orchestrator(
    settings: Optional[Settings] = None,
    transport: Optional[CompletionTransport] = None,
    cache: Optional[TieredCache] = None,
) -> ValidationOrchestrator:
    """Assemble the pipeline. The orchestrator owns and closes what it is given."""

    settings = settings or Settings()
    cache = cache or build_cache(settings)
    transport = transport or HttpCompletionTransport(settings.client)
    if not transport.is_available():
        logger.warning(
            "Completion provider unavailable - set %s; findings needing validation will be FAILED",
            settings.client.api_key_env,
        )

    limiter = RateLimiter(settings.client.requests_per_second)
    client = CachedCompletionClient(CompletionClient(transport, limiter, settings.client), cache)
    return ValidationOrchestrator(
        triage=TriageClassifier(settings.triage),
        extractor=CodeContextExtractor(settings.context),
        client=client,
        aggregator=ResultAggregator(cache),
        settings=settings.orchestrator,
    )


__all__ = ["build_cache", "build_orchestrator"]
