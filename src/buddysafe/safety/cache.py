"""
In-process cache of safety verdicts.

Keys are a fingerprint of the normalized message, the child's age and the
two most recent context messages. Entries expire after a TTL, the cache is
bounded with batch LRU eviction, and serious (severity 3) verdicts are
never stored so that such content is always re-examined.

The cache is per-process; separate instances do not share entries.
"""

from __future__ import annotations

import asyncio
import hashlib
import re
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from buddysafe.config import (
    CACHE_AGE_TOLERANCE_YEARS,
    CACHE_EVICTION_FRACTION,
    CACHE_MESSAGE_MAX_CHARS,
)
from buddysafe.logging import get_logger
from buddysafe.safety.base import SafetySeverity, SafetyVerdict

logger = get_logger(__name__)

_PUNCTUATION_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_message(message: str, max_chars: int = CACHE_MESSAGE_MAX_CHARS) -> str:
    """Lowercase, strip punctuation, collapse whitespace and truncate.

    Only used for cache keys; evaluators always see the original text.
    """
    text = _PUNCTUATION_RE.sub("", message.lower().strip())
    text = _WHITESPACE_RE.sub(" ", text).strip()
    return text[:max_chars]


@dataclass
class CacheEntry:
    """A cached verdict plus its bookkeeping."""

    verdict: SafetyVerdict
    created_at: float
    last_accessed: float
    hit_count: int
    child_age: int


class ResultCache:
    """
    Bounded TTL cache for safety verdicts.

    Safe for concurrent use: every operation holds an internal lock and
    none of them suspend.
    """

    def __init__(
        self,
        max_size: int = 10_000,
        ttl_seconds: float = 3600.0,
        age_tolerance: int = CACHE_AGE_TOLERANCE_YEARS,
        eviction_fraction: float = CACHE_EVICTION_FRACTION,
        max_message_chars: int = CACHE_MESSAGE_MAX_CHARS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self.age_tolerance = age_tolerance
        self.eviction_fraction = eviction_fraction
        self.max_message_chars = max_message_chars
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._cleanup_task: asyncio.Task | None = None

    def fingerprint(
        self,
        message: str,
        child_age: int,
        recent_messages: Sequence[str] | None = None,
    ) -> str:
        """Fixed-width key for a message, age and the two latest context messages."""
        context = "|".join(
            normalize_message(m, self.max_message_chars)
            for m in list(recent_messages or [])[:2]
        )
        key_data = f"{normalize_message(message, self.max_message_chars)}:{child_age}:{context}"
        return hashlib.sha256(key_data.encode("utf-8")).hexdigest()[:16]

    def _candidate_ages(self, child_age: int) -> list[int]:
        ages = [child_age]
        for delta in range(1, self.age_tolerance + 1):
            ages.extend([child_age - delta, child_age + delta])
        return ages

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.last_accessed > self.ttl_seconds

    def get(
        self,
        message: str,
        child_age: int,
        recent_messages: Sequence[str] | None = None,
    ) -> SafetyVerdict | None:
        """
        Cached verdict for this message, or None.

        An entry computed for a child up to ``age_tolerance`` years older or
        younger is also usable; the exact age is preferred.
        """
        now = self._clock()
        with self._lock:
            for age in self._candidate_ages(child_age):
                key = self.fingerprint(message, age, recent_messages)
                entry = self._entries.get(key)
                if entry is None:
                    continue
                if self._is_expired(entry, now):
                    del self._entries[key]
                    continue
                if abs(entry.child_age - child_age) > self.age_tolerance:
                    continue

                entry.hit_count += 1
                entry.last_accessed = now
                self._hits += 1
                return entry.verdict.annotate()

            self._misses += 1
            return None

    def set(
        self,
        message: str,
        child_age: int,
        verdict: SafetyVerdict,
        recent_messages: Sequence[str] | None = None,
    ) -> bool:
        """Store a verdict. Returns False when it was refused."""
        if verdict.severity >= SafetySeverity.SERIOUS:
            logger.debug("safety_cache_skip_serious", severity=int(verdict.severity))
            return False

        key = self.fingerprint(message, child_age, recent_messages)
        now = self._clock()
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_size:
                self._evict_least_used()
            self._entries[key] = CacheEntry(
                verdict=verdict.annotate(cache_hit=False),
                created_at=now,
                last_accessed=now,
                hit_count=1,
                child_age=child_age,
            )
        return True

    def _evict_least_used(self) -> None:
        """Drop the oldest, least-hit ~10% of entries in one pass. Lock held."""
        ordered = sorted(
            self._entries.items(),
            key=lambda item: (item[1].last_accessed, item[1].hit_count),
        )
        evict_count = max(1, int(self.max_size * self.eviction_fraction))
        for key, _ in ordered[:evict_count]:
            del self._entries[key]
            self._evictions += 1
        logger.info(
            "safety_cache_evicted",
            count=min(evict_count, len(ordered)),
            size=len(self._entries),
        )

    def cleanup(self) -> int:
        """Remove expired entries. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if self._is_expired(e, now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("safety_cache_cleanup", removed=len(expired))
        return len(expired)

    def clear(self) -> None:
        """Drop every entry and reset statistics."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def warm(self, entries: Iterable[tuple[str, int, SafetyVerdict]]) -> int:
        """Seed known verdicts. Serious verdicts are still refused."""
        return sum(
            1 for message, age, verdict in entries if self.set(message, age, verdict)
        )

    def stats(self) -> dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "hits": self._hits,
                "misses": self._misses,
                "size": len(self._entries),
                "evictions": self._evictions,
                "hit_rate": self._hits / total if total else 0.0,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def start_cleanup_task(self, interval_seconds: float = 900.0) -> asyncio.Task:
        """Run ``cleanup()`` periodically on the running event loop."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(
                self._cleanup_loop(interval_seconds)
            )
        return self._cleanup_task

    async def stop_cleanup_task(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _cleanup_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                self.cleanup()
            except Exception as e:
                logger.error("safety_cache_cleanup_error", error=str(e))
