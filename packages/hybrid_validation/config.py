"""Settings models and YAML loader."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from packages.hybrid_validation.errors import ConfigurationError
from packages.schema.models import AnalyzerClass

CONFIG_ENV = "HYBRID_TRIAGE_CONFIG"
CACHE_DIR_ENV = "HYBRID_TRIAGE_CACHE_DIR"
_DEFAULT_CACHE_ROOT = Path.home() / ".cache" / "hybrid-triage"

ValidationTrigger = Literal["always", "critical_only", "never"]


class ClassPolicy(BaseModel):
    trigger: ValidationTrigger
    baseline: float = Field(ge=0.0, le=1.0)


def _default_policies() -> Dict[AnalyzerClass, ClassPolicy]:
    return {
        AnalyzerClass.HIGH: ClassPolicy(trigger="critical_only", baseline=0.90),
        AnalyzerClass.MEDIUM: ClassPolicy(trigger="always", baseline=0.60),
        AnalyzerClass.LOW: ClassPolicy(trigger="always", baseline=0.40),
        AnalyzerClass.UNKNOWN: ClassPolicy(trigger="always", baseline=0.50),
    }


def _default_analyzers() -> Dict[str, AnalyzerClass]:
    return {
        "clang": AnalyzerClass.HIGH,
        "clang-tidy": AnalyzerClass.HIGH,
        "clang-analyzer": AnalyzerClass.HIGH,
        "semgrep": AnalyzerClass.MEDIUM,
        "regex": AnalyzerClass.LOW,
    }


class TriageSettings(BaseModel):
    policies: Dict[AnalyzerClass, ClassPolicy] = Field(default_factory=_default_policies)
    analyzers: Dict[str, AnalyzerClass] = Field(default_factory=_default_analyzers)
    noisy_keywords: List[str] = Field(
        default_factory=lambda: [
            "race condition",
            "data race",
            "mutex",
            "concurrent",
            "thread-safe",
            "synchronization",
        ]
    )
    threading_keywords: List[str] = Field(
        default_factory=lambda: [
            "pthread_create",
            "std::thread",
            "std::async",
            "boost::thread",
            "thread pool",
            "threadpool",
            "concurrent",
            "async",
        ]
    )
    short_circuit_classes: List[AnalyzerClass] = Field(
        default_factory=lambda: [AnalyzerClass.MEDIUM]
    )

    @field_validator("policies")
    @classmethod
    def _fill_policies(cls, value: Dict[AnalyzerClass, ClassPolicy]) -> Dict[AnalyzerClass, ClassPolicy]:
        merged = _default_policies()
        merged.update(value)
        return merged


class ContextSettings(BaseModel):
    max_search_lines: int = Field(default=50, ge=1)
    fallback_before: int = Field(default=10, ge=0)
    fallback_after: int = Field(default=20, ge=0)


class CacheSettings(BaseModel):
    root: Optional[Path] = None
    namespace: str = "ai_validation"
    persistent: bool = True
    l1_max_entries: int = Field(default=500, ge=1)
    l1_ttl_seconds: float = Field(default=3600.0, gt=0)
    l2_ttl_seconds: float = Field(default=7 * 24 * 3600.0, gt=0)

    def resolved_root(self) -> Path:
        override = os.environ.get(CACHE_DIR_ENV)
        if override:
            return Path(override)
        return self.root or _DEFAULT_CACHE_ROOT

    @property
    def directory(self) -> Path:
        return self.resolved_root() / self.namespace


class ClientSettings(BaseModel):
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    api_key_env: str = "OPENAI_API_KEY"
    timeout_seconds: float = Field(default=60.0, gt=0)
    requests_per_second: float = Field(default=5.0, gt=0)
    max_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0)
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2000, ge=1)

    def api_key(self) -> Optional[str]:
        return os.environ.get(self.api_key_env) or None


class OrchestratorSettings(BaseModel):
    concurrency_limit: int = Field(default=3, ge=1)
    confirmed_confidence: float = Field(default=0.95, ge=0.0, le=1.0)
    failure_multiplier: float = Field(default=0.8, ge=0.0, le=1.0)
    batch_timeout_seconds: float = Field(default=600.0, gt=0)
    shutdown_grace_seconds: float = Field(default=10.0, ge=0)


class Settings(BaseModel):
    triage: TriageSettings = Field(default_factory=TriageSettings)
    context: ContextSettings = Field(default_factory=ContextSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    client: ClientSettings = Field(default_factory=ClientSettings)
    orchestrator: OrchestratorSettings = Field(default_factory=OrchestratorSettings)


def load_settings(path: Optional[Path] = None) -> Settings:
    """Load settings from YAML; falls back to `$HYBRID_TRIAGE_CONFIG`, then defaults."""

    if path is None:
        env_path = os.environ.get(CONFIG_ENV)
        if not env_path:
            return Settings()
        path = Path(env_path)

    if not path.exists():
        raise ConfigurationError(f"Config file missing: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Failed to read config {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config root must be a mapping: {path}")

    try:
        return Settings.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid config {path}: {exc}") from exc


__all__ = [
    "CacheSettings",
    "ClassPolicy",
    "ClientSettings",
    "ContextSettings",
    "OrchestratorSettings",
    "Settings",
    "TriageSettings",
    "load_settings",
]
