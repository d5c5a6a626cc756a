import hashlib
import os
import threading
import time

import pytest

from packages.hybrid_validation.cache import TieredCache, make_cache_key
from packages.hybrid_validation.config import CacheSettings


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _file_for(cache: TieredCache, key: str):
    return cache.directory / hashlib.sha256(key.encode("utf-8")).hexdigest()


def test_cache_key_is_deterministic_and_mode_sensitive():
    key = make_cache_key("prompt", "json")

    assert key == make_cache_key("prompt", "json")
    assert key != make_cache_key("prompt", "text")
    assert key != make_cache_key("prompt ", "json")
    assert len(key) == 64


def test_put_then_get_round_trips(tmp_path):
    cache = TieredCache(CacheSettings(root=tmp_path))

    cache.put("k1", '{"is_vulnerability": true}')

    assert cache.get("k1") == '{"is_vulnerability": true}'
    assert cache.get("k1") == '{"is_vulnerability": true}'
    assert cache.get("missing") is None


def test_empty_key_and_none_value_are_ignored(tmp_path):
    cache = TieredCache(CacheSettings(root=tmp_path))

    cache.put("", "value")
    cache.put("k", None)

    assert cache.get("") is None
    assert cache.get("k") is None
    assert cache.stats().size == 0


def test_l2_file_is_named_by_key_digest_and_holds_raw_value(tmp_path):
    cache = TieredCache(CacheSettings(root=tmp_path, namespace="ns"))

    cache.put("k1", "raw response")

    path = _file_for(cache, "k1")
    assert path.parent == tmp_path / "ns"
    assert path.read_text(encoding="utf-8") == "raw response"
    assert [p.name for p in path.parent.iterdir()] == [path.name]


def test_l2_hit_is_promoted_to_l1(tmp_path):
    settings = CacheSettings(root=tmp_path)
    TieredCache(settings).put("k1", "persisted")

    fresh = TieredCache(settings)
    assert fresh.entry("k1") is None
    assert fresh.get("k1") == "persisted"
    assert fresh.entry("k1") is not None
    assert fresh.get("k1") == "persisted"

    stats = fresh.stats()
    assert (stats.l1_hits, stats.l2_hits, stats.misses) == (1, 1, 0)


def test_l2_entry_expires_after_ttl(tmp_path):
    settings = CacheSettings(root=tmp_path, l2_ttl_seconds=60)
    TieredCache(settings).put("k1", "old")
    path = _file_for(TieredCache(settings), "k1")
    written = path.stat().st_mtime

    clock = FakeClock(written + 59)
    assert TieredCache(settings, clock=clock).get("k1") == "old"

    clock = FakeClock(written + 60.5)
    assert TieredCache(settings, clock=clock).get("k1") is None
    assert not path.exists()


def test_l2_expiry_follows_file_mtime(tmp_path):
    settings = CacheSettings(root=tmp_path, l2_ttl_seconds=3600)
    TieredCache(settings).put("k1", "value")
    path = _file_for(TieredCache(settings), "k1")
    stale = time.time() - 7200
    os.utime(path, (stale, stale))

    assert TieredCache(settings).get("k1") is None
    assert not path.exists()


def test_l1_entry_expires_from_write_time():
    clock = FakeClock()
    cache = TieredCache(CacheSettings(persistent=False, l1_ttl_seconds=10), clock=clock)

    cache.put("k1", "v")
    clock.now += 9
    assert cache.get("k1") == "v"

    clock.now += 1
    assert cache.get("k1") is None


def test_l1_evicts_least_recently_used():
    cache = TieredCache(CacheSettings(persistent=False, l1_max_entries=2))

    cache.put("a", "1")
    cache.put("b", "2")
    assert cache.get("a") == "1"
    cache.put("c", "3")

    assert cache.get("b") is None
    assert cache.get("a") == "1"
    assert cache.get("c") == "3"


def test_failed_l2_write_does_not_fail_put(tmp_path, monkeypatch):
    cache = TieredCache(CacheSettings(root=tmp_path))

    def broken_mkstemp(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr("packages.hybrid_validation.cache.tempfile.mkstemp", broken_mkstemp)

    cache.put("k1", "value")

    assert cache.get("k1") == "value"
    assert not _file_for(cache, "k1").exists()


def test_unreadable_l2_file_is_a_miss(tmp_path):
    cache = TieredCache(CacheSettings(root=tmp_path))
    _file_for(cache, "k1").mkdir()

    assert cache.get("k1") is None
    assert cache.stats().misses == 1


def test_cleanup_expired_removes_stale_entries(tmp_path):
    clock = FakeClock(time.time())
    settings = CacheSettings(root=tmp_path, l1_ttl_seconds=100, l2_ttl_seconds=100)
    cache = TieredCache(settings, clock=clock)
    cache.put("old", "1")
    stale = clock.now - 500
    os.utime(_file_for(cache, "old"), (stale, stale))
    clock.now += 200
    cache.put("new", "2")
    os.utime(_file_for(cache, "new"), (clock.now, clock.now))

    removed = cache.cleanup_expired()

    assert removed == 2  # "old" from L1 and from disk
    assert cache.get("old") is None
    assert cache.get("new") == "2"


def test_clear_empties_both_tiers(tmp_path):
    cache = TieredCache(CacheSettings(root=tmp_path))
    cache.put("a", "1")
    cache.put("b", "2")

    cache.clear()

    assert cache.stats().size == 0
    assert list(cache.directory.iterdir()) == []
    assert cache.get("a") is None


def test_stats_report_hit_rates(tmp_path):
    settings = CacheSettings(root=tmp_path)
    TieredCache(settings).put("disk", "d")
    cache = TieredCache(settings)
    cache.put("mem", "m")

    cache.get("mem")
    cache.get("disk")
    cache.get("nope")
    cache.get("nope")
    stats = cache.stats()

    assert (stats.hits, stats.misses, stats.l1_hits, stats.l2_hits) == (2, 2, 1, 1)
    assert stats.hit_rate == pytest.approx(0.25)
    assert stats.requests_avoided == pytest.approx(0.5)
    assert stats.size == 2 + 2  # two L1 entries, two files


def test_concurrent_access_is_safe(tmp_path):
    cache = TieredCache(CacheSettings(root=tmp_path, l1_max_entries=16))
    errors = []

    def worker(worker_id: int) -> None:
        try:
            for i in range(50):
                key = f"k{i % 20}"
                cache.put(key, f"{key}:{worker_id}")
                value = cache.get(key)
                assert value is None or value.startswith(f"{key}:")
        except Exception as exc:  # pragma: no cover - surfaced by the assert below
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    for i in range(20):
        assert cache.get(f"k{i}").startswith(f"k{i}:")


def test_repeated_get_returns_same_result(tmp_path):
    cache = TieredCache(CacheSettings(root=tmp_path))
    cache.put("k1", "value")

    assert cache.get("k1") == cache.get("k1") == "value"
    assert cache.get("absent") is cache.get("absent") is None

    persisted = TieredCache(CacheSettings(root=tmp_path))
    assert persisted.get("k1") == persisted.get("k1") == "value"


def test_stale_read_keeps_a_file_rewritten_after_the_age_check(tmp_path):
    settings = CacheSettings(root=tmp_path, l2_ttl_seconds=60)
    writer = TieredCache(settings)
    writer.put("k1", "old")
    path = _file_for(writer, "k1")
    stale = time.time() - 600
    os.utime(path, (stale, stale))

    def clock_with_concurrent_put() -> float:
        writer.put("k1", "fresh")
        return time.time()

    reader = TieredCache(settings, clock=clock_with_concurrent_put)

    assert reader.get("k1") is None
    assert path.read_text(encoding="utf-8") == "fresh"
