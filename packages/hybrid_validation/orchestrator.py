"""Bounded-concurrency AI validation over a batch of findings.

Per finding: NEW -> SKIPPED | PENDING_VALIDATION; PENDING_VALIDATION ->
LOCAL_FILTERED | AI_CALLED; AI_CALLED -> CONFIRMED | REJECTED | FAILED.
REJECTED and LOCAL_FILTERED are dropped from the returned findings; every
other terminal state is kept. One task's failure never reaches its siblings
or the caller.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from packages.hybrid_validation.aggregator import BatchResult, ResultAggregator
from packages.hybrid_validation.cached_client import CachedCompletionClient
from packages.hybrid_validation.config import OrchestratorSettings
from packages.hybrid_validation.context import CodeContextExtractor
from packages.hybrid_validation.errors import CompletionInterrupted, ValidationTaskError
from packages.hybrid_validation.prompts import (
    SYSTEM_PROMPT,
    AiVerdict,
    build_validation_prompt,
    parse_verdict,
)
from packages.hybrid_validation.triage import TriageClassifier
from packages.schema.models import CacheStats, EnhancedFinding, Finding, Verdict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationTask:
    index: int
    finding: Finding
    extractor: CodeContextExtractor
    client: CachedCompletionClient
    cancel: threading.Event


class ValidationOrchestrator:
    def __init__(
        self,
        triage: TriageClassifier,
        extractor: CodeContextExtractor,
        client: CachedCompletionClient,
        aggregator: Optional[ResultAggregator] = None,
        settings: Optional[OrchestratorSettings] = None,
    ) -> None:
        self._triage = triage
        self._extractor = extractor
        self._client = client
        self._aggregator = aggregator or ResultAggregator(client.cache)
        self._settings = settings or OrchestratorSettings()
        self._closed = False
        logger.info(
            "Validation orchestrator ready (model: %s, concurrency: %d)",
            client.model,
            self._settings.concurrency_limit,
        )

    def __enter__(self) -> "ValidationOrchestrator":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def enhance(self, findings: Iterable[Finding]) -> List[EnhancedFinding]:
        """Kept findings only: REJECTED and LOCAL_FILTERED outcomes are dropped."""

        return self.enhance_batch(findings).findings

    def enhance_batch(self, findings: Iterable[Finding]) -> BatchResult:
        if self._closed:
            raise RuntimeError("ValidationOrchestrator is closed")

        batch = list(findings)
        if not batch:
            return BatchResult(findings=[])

        skipped: List[EnhancedFinding] = []
        pending: List[Finding] = []
        for finding in batch:
            if self._triage.needs_validation(finding):
                pending.append(finding)
            else:
                skipped.append(self._skipped(finding))

        logger.info(
            "Submitting %d findings for parallel AI validation, %d skipped",
            len(pending),
            len(skipped),
        )
        validated = self._run_pool(pending) if pending else []

        result = self._aggregator.merge(skipped, validated)
        self._aggregator.log_cache_stats()
        return result

    def cache_stats(self) -> CacheStats:
        return self._aggregator.cache_stats()

    def clear_cache(self) -> None:
        self._client.clear_cache()
        self._extractor.clear_cache()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._client.close()

    # Pool

    def _run_pool(self, pending: List[Finding]) -> List[EnhancedFinding]:
        pool_size = min(self._settings.concurrency_limit, len(pending))
        cancel = threading.Event()
        tasks = [
            ValidationTask(index, finding, self._extractor, self._client, cancel)
            for index, finding in enumerate(pending)
        ]
        results: List[Optional[EnhancedFinding]] = [None] * len(tasks)

        executor = ThreadPoolExecutor(max_workers=pool_size, thread_name_prefix="ai-validate")
        try:
            futures: Dict[Future, ValidationTask] = {
                executor.submit(self._execute, task): task for task in tasks
            }
            _, not_done = wait(futures, timeout=self._settings.batch_timeout_seconds)
            if not_done:
                logger.error(
                    "%d validation tasks still running after %.0fs; interrupting",
                    len(not_done),
                    self._settings.batch_timeout_seconds,
                )
                cancel.set()
                for future in not_done:
                    future.cancel()
                wait(not_done, timeout=self._settings.shutdown_grace_seconds)

            for future, task in futures.items():
                results[task.index] = self._collect(future, task)
        finally:
            cancel.set()
            executor.shutdown(wait=False, cancel_futures=True)

        return [outcome for outcome in results if outcome is not None]

    def _collect(self, future: Future, task: ValidationTask) -> EnhancedFinding:
        if future.cancelled() or not future.done():
            error = ValidationTaskError(task.finding.id, "validation did not finish before shutdown")
            logger.error("AI validation abandoned for finding %s", task.finding.id)
            return self._failed(task.finding, error)
        exc = future.exception()
        if exc is not None:
            logger.error("AI validation task crashed for finding %s", task.finding.id, exc_info=exc)
            return self._failed(task.finding, ValidationTaskError(task.finding.id, str(exc), exc))
        return future.result()

    def _execute(self, task: ValidationTask) -> EnhancedFinding:
        try:
            return self._validate(task)
        except Exception as exc:  # noqa: BLE001 - isolate per-finding failures
            logger.error("AI validation failed for finding %s", task.finding.id, exc_info=exc)
            return self._failed(task.finding, ValidationTaskError(task.finding.id, str(exc), exc))

    def _validate(self, task: ValidationTask) -> EnhancedFinding:
        finding = task.finding
        code = task.extractor.slice(finding.location.file_path, finding.location.line_number)

        if self._triage.is_local_false_positive(finding, code):
            logger.info(
                "Pre-filtered race-condition false positive: %s (no threading constructs)",
                finding.title,
            )
            return self._local_filtered(finding)

        if task.cancel.is_set():
            raise CompletionInterrupted("Batch cancelled before the AI call")

        prompt = build_validation_prompt(finding, code)
        response = task.client.send(
            SYSTEM_PROMPT, prompt, task.client.default_options(), cancel=task.cancel
        )
        verdict = parse_verdict(response)

        if verdict.is_vulnerability:
            return self._confirmed(finding, verdict)
        logger.info("AI filtered false positive: %s - Reason: %s", finding.title, verdict.reason)
        return self._rejected(finding, verdict)

    # Outcomes

    def _skipped(self, finding: Finding) -> EnhancedFinding:
        return EnhancedFinding(
            finding=finding,
            confidence=self._triage.baseline_for(finding),
            verdict=Verdict.SKIPPED,
            explanation="High confidence analyzer",
            metadata={"ai_validated": False},
        )

    def _local_filtered(self, finding: Finding) -> EnhancedFinding:
        return EnhancedFinding(
            finding=finding,
            confidence=self._triage.baseline_for(finding),
            verdict=Verdict.LOCAL_FILTERED,
            explanation="Concurrency warning in code with no threading constructs",
            metadata={"ai_validated": False},
        )

    def _confirmed(self, finding: Finding, verdict: AiVerdict) -> EnhancedFinding:
        severity = verdict.severity
        if severity is None:
            logger.warning(
                "Invalid severity from AI for %s: %r, keeping %s",
                finding.id,
                verdict.suggested_severity,
                finding.severity.value,
            )
        return EnhancedFinding(
            finding=finding,
            confidence=self._settings.confirmed_confidence,
            verdict=Verdict.CONFIRMED,
            explanation=verdict.reason or None,
            severity_override=severity,
            metadata={"ai_validated": True, "original_severity": finding.severity.value},
        )

    def _rejected(self, finding: Finding, verdict: AiVerdict) -> EnhancedFinding:
        return EnhancedFinding(
            finding=finding,
            confidence=0.0,
            verdict=Verdict.REJECTED,
            explanation=verdict.reason or None,
            metadata={"ai_validated": True},
        )

    def _failed(self, finding: Finding, error: ValidationTaskError) -> EnhancedFinding:
        baseline = self._triage.baseline_for(finding)
        return EnhancedFinding(
            finding=finding,
            confidence=baseline * self._settings.failure_multiplier,
            verdict=Verdict.FAILED,
            explanation="AI validation failed, using static analysis only",
            metadata={"ai_validated": False, "validation_error": str(error)},
        )


__all__ = ["ValidationOrchestrator", "ValidationTask"]
