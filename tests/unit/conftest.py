import json
import threading
import time
from pathlib import Path
from types import SimpleNamespace
from typing import Callable, List, Optional

import pytest

from packages.hybrid_validation.client import CompletionRequest
from packages.hybrid_validation.config import (
    CacheSettings,
    ClientSettings,
    OrchestratorSettings,
    Settings,
)
from packages.schema.models import Finding, Location, Severity


def _confirm(severity: str = "High", reason: str = "reachable with user input") -> str:
    return json.dumps(
        {"is_vulnerability": True, "reason": reason, "suggested_severity": severity}
    )


def _reject(reason: str = "bounds checked above") -> str:
    return json.dumps(
        {"is_vulnerability": False, "reason": reason, "suggested_severity": "Info"}
    )


class FakeTransport:
    """Thread-safe stand-in for the HTTP transport."""

    def __init__(
        self,
        responder: Optional[Callable[[CompletionRequest], str]] = None,
        available: bool = True,
        delay: float = 0.0,
    ) -> None:
        self._responder = responder or (lambda request: _confirm())
        self._available = available
        self._delay = delay
        self._lock = threading.Lock()
        self.requests: List[CompletionRequest] = []
        self.active = 0
        self.max_active = 0
        self.closed = False

    @property
    def calls(self) -> int:
        return len(self.requests)

    def complete(self, request: CompletionRequest) -> str:
        with self._lock:
            self.requests.append(request)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self._delay:
                time.sleep(self._delay)
            return self._responder(request)
        finally:
            with self._lock:
                self.active -= 1

    def is_available(self) -> bool:
        return self._available

    def close(self) -> None:
        self.closed = True


def _make_finding(
    finding_id: str = "F-1",
    *,
    title: str = "Buffer overflow",
    description: str = "strcpy into fixed buffer",
    severity: Severity = Severity.HIGH,
    analyzer: str = "regex",
    file_path: str = "src/main.c",
    line: int = 1,
    category: str = "BUFFER_OVERFLOW",
) -> Finding:
    return Finding(
        id=finding_id,
        title=title,
        description=description,
        severity=severity,
        category=category,
        location=Location(file_path=file_path, line_number=line),
        source_analyzer=analyzer,
    )


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("HYBRID_TRIAGE_CACHE_DIR", raising=False)
    monkeypatch.delenv("HYBRID_TRIAGE_CONFIG", raising=False)


@pytest.fixture
def make_finding() -> Callable[..., Finding]:
    return _make_finding


@pytest.fixture
def verdicts() -> SimpleNamespace:
    return SimpleNamespace(confirm=_confirm, reject=_reject)


@pytest.fixture
def fake_transport() -> type:
    return FakeTransport


@pytest.fixture
def fast_settings(tmp_path: Path) -> Callable[..., Settings]:
    """Settings with a private cache dir, no retry backoff and a loose rate limit."""

    def build(**orchestrator) -> Settings:
        return Settings(
            cache=CacheSettings(root=tmp_path / "cache"),
            client=ClientSettings(requests_per_second=1000.0, retry_base_delay=0.0),
            orchestrator=OrchestratorSettings(**orchestrator),
        )

    return build
