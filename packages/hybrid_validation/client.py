"""Rate-limited, retried completion client and its HTTP transport."""
from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field

from packages.hybrid_validation.config import ClientSettings
from packages.hybrid_validation.errors import (
    CompletionClientError,
    CompletionInterrupted,
    TransientCompletionError,
)
from packages.hybrid_validation.ratelimit import RateLimiter, wait_interruptibly

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = {408, 429}


class ResponseMode(str, Enum):
    JSON = "json"
    TEXT = "text"


class CompletionOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2000, ge=1)
    mode: ResponseMode = ResponseMode.JSON


class CompletionRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    model: str
    messages: List[Dict[str, str]]
    temperature: float
    max_tokens: int
    mode: ResponseMode = ResponseMode.JSON

    def payload(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": self.model,
            "messages": list(self.messages),
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if self.mode is ResponseMode.JSON:
            body["response_format"] = {"type": "json_object"}
        return body


class CompletionTransport(Protocol):
    def complete(self, request: CompletionRequest) -> str: ...

    def is_available(self) -> bool: ...

    def close(self) -> None: ...


class HttpCompletionTransport:
    """OpenAI-compatible `/chat/completions` over httpx."""

    def __init__(self, settings: ClientSettings, client: Optional[httpx.Client] = None) -> None:
        self._settings = settings
        self._api_key = settings.api_key()
        self._client = client or httpx.Client(
            base_url=settings.base_url.rstrip("/"),
            timeout=httpx.Timeout(settings.timeout_seconds),
        )

    def is_available(self) -> bool:
        return bool(self._api_key)

    def complete(self, request: CompletionRequest) -> str:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        try:
            response = self._client.post("/chat/completions", json=request.payload(), headers=headers)
        except httpx.TimeoutException as exc:
            raise TransientCompletionError(f"Request timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientCompletionError(f"Transport error: {exc}") from exc

        status = response.status_code
        if status in _RETRYABLE_STATUS or status >= 500:
            raise TransientCompletionError(f"HTTP {status}: {response.text[:200]}")
        if status >= 400:
            raise CompletionClientError(f"HTTP {status}: {response.text[:200]}")

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise TransientCompletionError(f"Malformed completion payload: {exc}") from exc

        usage = data.get("usage") or {}
        logger.debug("Completion received: %s tokens", usage.get("total_tokens", "?"))
        return content or ""

    def close(self) -> None:
        self._client.close()


class CompletionClient:
    """Blocking `send`, throttled by a shared limiter, retried on transient failure."""

    def __init__(
        self,
        transport: CompletionTransport,
        rate_limiter: RateLimiter,
        settings: Optional[ClientSettings] = None,
    ) -> None:
        self._transport = transport
        self._limiter = rate_limiter
        self._settings = settings or ClientSettings()

    @property
    def model(self) -> str:
        return self._settings.model

    def default_options(self, mode: ResponseMode = ResponseMode.JSON) -> CompletionOptions:
        return CompletionOptions(
            temperature=self._settings.temperature,
            max_tokens=self._settings.max_tokens,
            mode=mode,
        )

    def is_available(self) -> bool:
        return self._transport.is_available()

    def build_request(
        self, system_prompt: str, user_prompt: str, options: CompletionOptions
    ) -> CompletionRequest:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})
        return CompletionRequest(
            model=self._settings.model,
            messages=messages,
            temperature=options.temperature,
            max_tokens=options.max_tokens,
            mode=options.mode,
        )

    def send(
        self,
        system_prompt: str,
        user_prompt: str,
        options: Optional[CompletionOptions] = None,
        cancel: Optional[threading.Event] = None,
    ) -> str:
        if not self._transport.is_available():
            raise CompletionClientError("Completion provider is not available - check API key")

        request = self.build_request(system_prompt, user_prompt, options or self.default_options())
        attempts = self._settings.max_attempts
        last_error: Optional[TransientCompletionError] = None

        for attempt in range(1, attempts + 1):
            self._limiter.acquire(cancel)
            try:
                content = self._transport.complete(request).strip()
                if not content:
                    raise TransientCompletionError("Completion service returned empty content")
                return content
            except CompletionInterrupted:
                raise
            except TransientCompletionError as exc:
                last_error = exc
                logger.warning("Completion request failed (attempt %d/%d): %s", attempt, attempts, exc)
                if attempt < attempts:
                    wait_interruptibly(self._settings.retry_base_delay * attempt, cancel)

        raise CompletionClientError(
            f"Completion failed after {attempts} attempts"
        ) from last_error

    def close(self) -> None:
        self._transport.close()
        self._limiter.close()


__all__ = [
    "CompletionClient",
    "CompletionOptions",
    "CompletionRequest",
    "CompletionTransport",
    "HttpCompletionTransport",
    "ResponseMode",
]
