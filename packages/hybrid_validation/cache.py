"""Two-tier response cache: bounded in-memory L1 over a TTL'd one-file-per-entry L2.

L1 expiry is measured from write time; L2 expiry from the file's mtime, which is
the only freshness signal on disk (files hold the raw value, no envelope).
Concurrent callers are safe; the last write wins.
"""
from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import threading
import time
from collections import OrderedDict
from pathlib import Path
from typing import Callable, List, Optional

from packages.hybrid_validation.config import CacheSettings
from packages.hybrid_validation.errors import CacheIOError
from packages.schema.models import CacheEntry, CacheStats, CacheTier

logger = logging.getLogger(__name__)

_TMP_PREFIX = ".tmp-"


def make_cache_key(prompt: str, mode: str) -> str:
    """Stable key for a (prompt, response mode) pair."""

    payload = json.dumps({"mode": mode, "prompt": prompt}, sort_keys=True).encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


def _short(key: str) -> str:
    return key if len(key) <= 20 else key[:20] + "..."


class TieredCache:
    def __init__(
        self,
        settings: Optional[CacheSettings] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings or CacheSettings()
        self._clock = clock
        self._l1: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._l1_hits = 0
        self._l2_hits = 0
        self._misses = 0
        self._directory: Optional[Path] = None

        if self._settings.persistent:
            self._directory = self._settings.directory
            self._directory.mkdir(parents=True, exist_ok=True)
            logger.debug("Persistent cache directory: %s", self._directory)

    @property
    def directory(self) -> Optional[Path]:
        return self._directory

    def get(self, key: str) -> Optional[str]:
        if not key:
            return None

        value = self._l1_get(key)
        if value is not None:
            self._count("l1")
            logger.debug("Cache L1 HIT: %s", _short(key))
            return value

        if self._directory is not None:
            try:
                value = self._l2_get(key)
            except CacheIOError as exc:
                logger.warning("Cache L2 read failed for %s: %s", _short(key), exc)
                value = None
            if value is not None:
                self._l1_put(key, value)
                self._count("l2")
                logger.debug("Cache L2 HIT (promoted to L1): %s", _short(key))
                return value

        self._count("miss")
        logger.debug("Cache MISS: %s", _short(key))
        return None

    def put(self, key: str, value: str) -> None:
        if not key or value is None:
            return
        self._l1_put(key, value)
        if self._directory is None:
            return
        try:
            self._l2_put(key, value)
        except CacheIOError as exc:
            logger.warning("Failed to persist cache entry %s: %s", _short(key), exc)

    def cleanup_expired(self) -> int:
        """Drop expired entries from both tiers; returns how many were removed."""

        removed = 0
        now = self._clock()
        with self._lock:
            stale = [k for k, e in self._l1.items() if self._l1_expired(e, now)]
            for key in stale:
                del self._l1[key]
            removed += len(stale)

        for path in self._l2_files():
            try:
                if self._drop_if_stale(path):
                    removed += 1
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.warning("Failed to remove expired cache file %s: %s", path.name, exc)
        logger.info("Cache cleanup completed: %d expired entries removed", removed)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._l1.clear()
        for path in self._l2_files():
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.warning("Failed to remove cache file %s: %s", path.name, exc)
        logger.info("Cache cleared")

    def stats(self) -> CacheStats:
        with self._lock:
            l1_size = len(self._l1)
            l1_hits, l2_hits, misses = self._l1_hits, self._l2_hits, self._misses
        l2_size = len(self._l2_files())
        return CacheStats(
            hits=l1_hits + l2_hits,
            misses=misses,
            l1_hits=l1_hits,
            l2_hits=l2_hits,
            size=l1_size + l2_size,
        )

    def entry(self, key: str) -> Optional[CacheEntry]:
        """Raw L1 record for inspection; does not touch recency or counters."""

        with self._lock:
            return self._l1.get(key)

    # L1

    def _l1_get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._l1.get(key)
            if entry is None:
                return None
            if self._l1_expired(entry, self._clock()):
                del self._l1[key]
                return None
            self._l1.move_to_end(key)
            return entry.value

    def _l1_put(self, key: str, value: str) -> None:
        entry = CacheEntry(key=key, value=value, written_at=self._clock(), tier=CacheTier.L1)
        with self._lock:
            self._l1[key] = entry
            self._l1.move_to_end(key)
            while len(self._l1) > self._settings.l1_max_entries:
                evicted, _ = self._l1.popitem(last=False)
                logger.debug("Cache L1 evicted: %s", _short(evicted))

    def _l1_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.written_at >= self._settings.l1_ttl_seconds

    # L2

    def _file_for(self, key: str) -> Path:
        assert self._directory is not None
        return self._directory / hashlib.sha256(key.encode("utf-8")).hexdigest()

    def _l2_get(self, key: str) -> Optional[str]:
        path = self._file_for(key)
        try:
            if self._drop_if_stale(path):
                logger.debug("Expired cache file deleted: %s", _short(key))
                return None
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise CacheIOError(str(exc)) from exc

    def _l2_put(self, key: str, value: str) -> None:
        path = self._file_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix=_TMP_PREFIX, dir=path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(value)
                os.replace(tmp, path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise CacheIOError(str(exc)) from exc

    def _drop_if_stale(self, path: Path) -> bool:
        """Unlink `path` if expired; True when the stored entry counts as gone."""

        stat = path.stat()
        if self._clock() - stat.st_mtime < self._settings.l2_ttl_seconds:
            return False
        # A concurrent put may have replaced the file since the age check; keep the new one.
        if path.stat().st_mtime_ns == stat.st_mtime_ns:
            path.unlink(missing_ok=True)
        return True

    def _l2_files(self) -> List[Path]:
        if self._directory is None or not self._directory.exists():
            return []
        return [
            p for p in self._directory.iterdir()
            if p.is_file() and not p.name.startswith(_TMP_PREFIX)
        ]

    def _count(self, outcome: str) -> None:
        with self._lock:
            if outcome == "l1":
                self._l1_hits += 1
            elif outcome == "l2":
                self._l2_hits += 1
            else:
                self._misses += 1


__all__ = ["TieredCache", "make_cache_key"]
