"""Exception taxonomy for the hybrid validation pipeline."""
from __future__ import annotations

from typing import Optional


class HybridTriageError(Exception):
    """Base class for every error raised by this project."""


class ConfigurationError(HybridTriageError):
    """Invalid or unreadable settings. Fatal, raised at startup only."""


class ContextExtractionError(HybridTriageError):
    """Source slicing failed. Converted to a placeholder string, never escapes."""


class CacheIOError(HybridTriageError):
    """Disk tier read/write failure. Logged; the operation bypasses the cache."""


class CompletionClientError(HybridTriageError):
    """Terminal completion failure (non-retryable, or retries exhausted)."""


class TransientCompletionError(CompletionClientError):
    """Retryable failure: timeouts, throttling, 5xx, empty content."""


class CompletionInterrupted(CompletionClientError):
    """A blocked permit wait or backoff sleep was cancelled."""


class ValidationTaskError(HybridTriageError):
    """Per-finding failure inside the orchestrator; becomes a FAILED verdict."""

    def __init__(self, finding_id: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"{finding_id}: {message}")
        self.finding_id = finding_id
        self.cause = cause


class VerdictParseError(HybridTriageError):
    """AI response was not a usable verdict object."""


__all__ = [
    "CacheIOError",
    "CompletionClientError",
    "CompletionInterrupted",
    "ConfigurationError",
    "ContextExtractionError",
    "HybridTriageError",
    "TransientCompletionError",
    "ValidationTaskError",
    "VerdictParseError",
]
