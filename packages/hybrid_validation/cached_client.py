"""Read-through/write-through cache in front of CompletionClient."""
from __future__ import annotations

import logging
import threading
from typing import Optional

from packages.hybrid_validation.cache import TieredCache, make_cache_key
from packages.hybrid_validation.client import CompletionClient, CompletionOptions
from packages.schema.models import CacheStats

logger = logging.getLogger(__name__)


class CachedCompletionClient:
    def __init__(self, delegate: CompletionClient, cache: TieredCache) -> None:
        self._delegate = delegate
        self._cache = cache

    @property
    def cache(self) -> TieredCache:
        return self._cache

    @property
    def model(self) -> str:
        return self._delegate.model

    def default_options(self) -> CompletionOptions:
        return self._delegate.default_options()

    def is_available(self) -> bool:
        return self._delegate.is_available()

    def send(
        self,
        system_prompt: str,
        user_prompt: str,
        options: Optional[CompletionOptions] = None,
        cancel: Optional[threading.Event] = None,
    ) -> str:
        options = options or self._delegate.default_options()
        key = make_cache_key(f"{system_prompt}\n\n{user_prompt}", options.mode.value)

        cached = self._cache.get(key)
        if cached is not None:
            return cached

        logger.debug("Cache MISS - sending request to completion service")
        result = self._delegate.send(system_prompt, user_prompt, options, cancel=cancel)
        try:
            self._cache.put(key, result)
        except Exception:  # noqa: BLE001 - a cache write must never fail the call
            logger.warning("Failed to cache completion response", exc_info=True)
        return result

    def stats(self) -> CacheStats:
        return self._cache.stats()

    def clear_cache(self) -> None:
        self._cache.clear()

    def close(self) -> None:
        self._delegate.close()


__all__ = ["CachedCompletionClient"]
