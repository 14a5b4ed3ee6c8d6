"""
Tests for the safety verdict cache.
"""

import pytest

from buddysafe.safety.base import SafetyAction, SafetyVerdict
from buddysafe.safety.cache import ResultCache, normalize_message


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _warn():
    return SafetyVerdict(
        is_safe=False,
        severity=2,
        reason="swearing",
        action=SafetyAction.WARN,
        flagged_terms=["swearing"],
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return ResultCache(max_size=100, ttl_seconds=3600, clock=clock)


def test_normalize_message():
    assert normalize_message("  Hello,   World!! ") == "hello world"
    assert len(normalize_message("a" * 500)) == 200


def test_fingerprint_is_fixed_width_and_normalized(cache):
    key = cache.fingerprint("Hi there!", 8)
    assert len(key) == 16
    assert key == cache.fingerprint("hi   THERE", 8)
    assert key != cache.fingerprint("hi there", 9)


def test_fingerprint_uses_two_latest_context_messages(cache):
    base = cache.fingerprint("ok", 8, ["b", "a"])
    assert base == cache.fingerprint("ok", 8, ["b", "a", "older"])
    assert base != cache.fingerprint("ok", 8, ["a", "b"])


def test_hit_after_set(cache):
    cache.set("I love my dog!", 8, SafetyVerdict.allow())

    hit = cache.get("i love my dog", 8)

    assert hit is not None
    assert hit.is_safe is True
    assert cache.stats()["hits"] == 1


def test_miss_is_counted(cache):
    assert cache.get("nothing here", 8) is None
    assert cache.stats()["misses"] == 1


def test_adjacent_age_is_a_hit(cache):
    cache.set("I love my dog!", 8, SafetyVerdict.allow())

    assert cache.get("I love my dog!", 9) is not None
    assert cache.get("I love my dog!", 7) is not None
    assert cache.get("I love my dog!", 10) is None


def test_exact_age_is_preferred(cache):
    cache.set("hello", 9, SafetyVerdict.allow(reason="nine"))
    cache.set("hello", 8, SafetyVerdict.allow(reason="eight"))

    assert cache.get("hello", 9).reason == "nine"


def test_serious_verdicts_are_never_stored(cache):
    serious = SafetyVerdict(
        is_safe=False,
        severity=3,
        reason="pii",
        action=SafetyAction.ESCALATE,
    )

    assert cache.set("Where do you live?", 8, serious) is False
    assert cache.get("Where do you live?", 8) is None
    assert len(cache) == 0


def test_entries_expire_after_ttl(cache, clock):
    cache.set("hello", 8, SafetyVerdict.allow())
    clock.advance(3601)

    assert cache.get("hello", 8) is None
    assert len(cache) == 0


def test_access_extends_lifetime(cache, clock):
    cache.set("hello", 8, SafetyVerdict.allow())
    clock.advance(3000)
    assert cache.get("hello", 8) is not None

    clock.advance(3000)
    assert cache.get("hello", 8) is not None


def test_eviction_removes_a_batch(clock):
    cache = ResultCache(max_size=20, ttl_seconds=3600, clock=clock)
    for i in range(20):
        clock.advance(1)
        cache.set(f"message {i}", 8, SafetyVerdict.allow())

    clock.advance(1)
    cache.set("one more", 8, SafetyVerdict.allow())

    # 10% of 20 evicted, then the new entry added
    assert len(cache) == 19
    assert cache.stats()["evictions"] == 2
    assert cache.get("message 0", 8) is None
    assert cache.get("message 1", 8) is None
    assert cache.get("one more", 8) is not None


def test_size_never_exceeds_max(clock):
    cache = ResultCache(max_size=5, ttl_seconds=3600, clock=clock)
    for i in range(50):
        clock.advance(1)
        cache.set(f"m{i}", 8, _warn())
        assert len(cache) <= 5


def test_overwrite_does_not_evict(clock):
    cache = ResultCache(max_size=2, ttl_seconds=3600, clock=clock)
    cache.set("a", 8, SafetyVerdict.allow())
    cache.set("b", 8, SafetyVerdict.allow())
    cache.set("a", 8, _warn())

    assert len(cache) == 2
    assert cache.get("a", 8).severity == 2


def test_cached_verdict_is_a_copy(cache):
    cache.set("hello", 8, _warn())
    first = cache.get("hello", 8)
    first.flagged_terms.append("mutated")

    assert cache.get("hello", 8).flagged_terms == ["swearing"]


def test_cleanup_removes_expired(cache, clock):
    cache.set("old", 8, SafetyVerdict.allow())
    clock.advance(2000)
    cache.set("new", 8, SafetyVerdict.allow())
    clock.advance(2000)

    assert cache.cleanup() == 1
    assert len(cache) == 1


def test_warm_skips_serious(cache):
    serious = SafetyVerdict(
        is_safe=False, severity=3, reason="x", action=SafetyAction.ESCALATE
    )
    stored = cache.warm(
        [("hi", 8, SafetyVerdict.allow()), ("bad", 8, serious), ("hey", 10, _warn())]
    )

    assert stored == 2
    assert len(cache) == 2


def test_clear_resets_stats(cache):
    cache.set("hello", 8, SafetyVerdict.allow())
    cache.get("hello", 8)
    cache.get("other", 8)

    cache.clear()

    assert cache.stats() == {
        "hits": 0,
        "misses": 0,
        "size": 0,
        "evictions": 0,
        "hit_rate": 0.0,
    }


async def test_cleanup_task_can_be_stopped(cache):
    task = cache.start_cleanup_task(interval_seconds=60)
    assert not task.done()

    await cache.stop_cleanup_task()

    assert task.cancelled()
