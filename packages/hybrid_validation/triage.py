"""Decides which findings need AI validation and what they score without it."""
from __future__ import annotations

import logging
from typing import Dict, Optional

from packages.hybrid_validation.config import TriageSettings
from packages.schema.models import AnalyzerClass, Finding, Severity

logger = logging.getLogger(__name__)


class TriageClassifier:
    def __init__(self, settings: Optional[TriageSettings] = None) -> None:
        self._settings = settings or TriageSettings()
        self._analyzers: Dict[str, AnalyzerClass] = {
            name.strip().lower(): cls for name, cls in self._settings.analyzers.items()
        }

    def analyzer_class(self, finding: Finding) -> AnalyzerClass:
        return self._analyzers.get(finding.source_analyzer.strip().lower(), AnalyzerClass.UNKNOWN)

    def baseline_confidence(self, analyzer_class: AnalyzerClass) -> float:
        policy = self._settings.policies.get(analyzer_class)
        if policy is None:
            policy = self._settings.policies[AnalyzerClass.UNKNOWN]
        return policy.baseline

    def baseline_for(self, finding: Finding) -> float:
        return self.baseline_confidence(self.analyzer_class(finding))

    def needs_validation(self, finding: Finding) -> bool:
        analyzer_class = self.analyzer_class(finding)
        policy = self._settings.policies.get(analyzer_class) or self._settings.policies[AnalyzerClass.UNKNOWN]
        if policy.trigger == "always":
            return True
        if policy.trigger == "critical_only":
            return finding.severity is Severity.CRITICAL
        return False

    def is_noisy(self, finding: Finding) -> bool:
        """True for short-circuit-eligible findings with race/concurrency wording."""

        if self.analyzer_class(finding) not in self._settings.short_circuit_classes:
            return False
        text = f"{finding.title}\n{finding.description}".lower()
        return any(keyword in text for keyword in self._settings.noisy_keywords)

    def is_local_false_positive(self, finding: Finding, code_context: str) -> bool:
        """Noisy finding whose context shows no threading construct at all."""

        if not self.is_noisy(finding):
            return False
        # Placeholder text means there is no code to judge; leave it to the AI.
        if code_context.startswith("[Error:"):
            return False
        code = code_context.lower()
        for keyword in self._settings.threading_keywords:
            if keyword in code:
                logger.debug("Threading construct %r present; keeping %s", keyword, finding.id)
                return False
        return True


__all__ = ["TriageClassifier"]
