# Contract-only models. Keep names/fields stable.
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFO = "INFO"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Severity"]:
        """Case-insensitive lookup; returns None for anything outside the enum."""

        if not value:
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None

    @property
    def level(self) -> int:
        return _SEVERITY_LEVELS[self]


_SEVERITY_LEVELS = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
    Severity.INFO: 0,
}


class AnalyzerClass(str, Enum):
    """Precision class of the analyzer that produced a finding."""

    HIGH = "high"  # AST-based
    MEDIUM = "medium"  # pattern rules
    LOW = "low"  # regex/text
    UNKNOWN = "unknown"


class Verdict(str, Enum):
    SKIPPED = "SKIPPED"
    LOCAL_FILTERED = "LOCAL_FILTERED"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"
    FAILED = "FAILED"

    @property
    def excluded(self) -> bool:
        return self in (Verdict.REJECTED, Verdict.LOCAL_FILTERED)


class Location(BaseModel):
    model_config = ConfigDict(frozen=True)

    file_path: str
    line_number: int
    column_number: Optional[int] = None

    def __str__(self) -> str:
        text = self.file_path
        if self.line_number > 0:
            text += f":{self.line_number}"
            if self.column_number:
                text += f":{self.column_number}"
        return text


class Finding(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str = ""
    severity: Severity
    category: str = "UNKNOWN"
    location: Location
    source_analyzer: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class EnhancedFinding(BaseModel):
    model_config = ConfigDict(frozen=True)

    finding: Finding
    confidence: float = Field(ge=0.0, le=1.0)
    verdict: Verdict
    explanation: Optional[str] = None
    severity_override: Optional[Severity] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def severity(self) -> Severity:
        return self.severity_override or self.finding.severity

    @property
    def kept(self) -> bool:
        return not self.verdict.excluded


class CacheTier(str, Enum):
    L1 = "L1"
    L2 = "L2"


class CacheEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    value: str
    written_at: float
    tier: CacheTier


class CacheStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    hits: int = 0
    misses: int = 0
    l1_hits: int = 0
    l2_hits: int = 0
    size: int = 0

    @property
    def lookups(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        return self.l1_hits / self.lookups if self.lookups else 0.0

    @property
    def requests_avoided(self) -> float:
        return self.hits / self.lookups if self.lookups else 0.0

    def __str__(self) -> str:
        return (
            f"CacheStats(hits={self.hits}, misses={self.misses}, size={self.size}, "
            f"hitRate={self.hit_rate:.1%}, avoided={self.requests_avoided:.1%})"
        )


class BatchSummary(BaseModel):
    submitted: int = 0
    skipped: int = 0
    confirmed: int = 0
    rejected: int = 0
    local_filtered: int = 0
    failed: int = 0

    @property
    def validated(self) -> int:
        return self.confirmed

    @property
    def filtered(self) -> int:
        return self.rejected + self.local_filtered

    @property
    def errors(self) -> int:
        return self.failed
