"""
Rolling request metrics for the cache layer.

Tracks dedupe hits, cache hits and upstream calls so the admin stats
endpoint can report how many API calls the cache is saving.
"""
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional

logger = logging.getLogger("cache.metrics")

DEDUPE_HIT = "dedupe_hit"
DEDUPE_MISS = "dedupe_miss"
CACHE_HIT = "cache_hit"
CACHE_MISS = "cache_miss"
API_CALL = "api_call"


@dataclass
class MetricEntry:
    timestamp: float
    type: str
    endpoint: str
    duration_ms: Optional[float] = None


class ApiMetrics:
    """In-memory ring of recent cache/dedupe/API events."""

    def __init__(
        self,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.time,
    ):
        self._entries: Deque[MetricEntry] = deque(maxlen=max_entries)
        self._lock = threading.Lock()
        self._clock = clock

    def log_dedupe(self, key: str, hit: bool) -> None:
        self._add(DEDUPE_HIT if hit else DEDUPE_MISS, key)

    def log_cache(self, endpoint: str, hit: bool) -> None:
        self._add(CACHE_HIT if hit else CACHE_MISS, endpoint)

    def log_api_call(self, endpoint: str, duration_ms: float) -> None:
        self._add(API_CALL, endpoint, duration_ms)
        logger.info(f"API call {endpoint} ({duration_ms:.0f}ms)")

    def _add(self, kind: str, endpoint: str, duration_ms: Optional[float] = None) -> None:
        with self._lock:
            self._entries.append(
                MetricEntry(
                    timestamp=self._clock(),
                    type=kind,
                    endpoint=endpoint,
                    duration_ms=duration_ms,
                )
            )

    def get_stats(self, minutes: int = 5) -> Dict[str, Any]:
        """
        Summarise the last ``minutes`` of activity.

        Returns:
            Dict with deduplication, cache, api and savings sections
        """
        cutoff = self._clock() - minutes * 60
        with self._lock:
            recent = [m for m in self._entries if m.timestamp >= cutoff]

        counts = {kind: 0 for kind in (DEDUPE_HIT, DEDUPE_MISS, CACHE_HIT, CACHE_MISS, API_CALL)}
        durations: List[float] = []
        for m in recent:
            counts[m.type] += 1
            if m.type == API_CALL and m.duration_ms is not None:
                durations.append(m.duration_ms)

        dedupe_total = counts[DEDUPE_HIT] + counts[DEDUPE_MISS]
        cache_total = counts[CACHE_HIT] + counts[CACHE_MISS]
        saved = counts[DEDUPE_HIT] + counts[CACHE_HIT]

        return {
            "windowMinutes": minutes,
            "deduplication": {
                "hits": counts[DEDUPE_HIT],
                "misses": counts[DEDUPE_MISS],
                "total": dedupe_total,
                "hitRatePercent": _percent(counts[DEDUPE_HIT], dedupe_total),
            },
            "cache": {
                "hits": counts[CACHE_HIT],
                "misses": counts[CACHE_MISS],
                "total": cache_total,
                "hitRatePercent": _percent(counts[CACHE_HIT], cache_total),
            },
            "api": {
                "calls": counts[API_CALL],
                "avgDurationMs": round(sum(durations) / len(durations), 1) if durations else 0,
            },
            "savings": {
                "savedByDedupe": counts[DEDUPE_HIT],
                "savedByCache": counts[CACHE_HIT],
                "totalSaved": saved,
                "savingsRatePercent": _percent(saved, dedupe_total),
            },
        }

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("Metrics reset")


def _percent(part: int, total: int) -> float:
    return round(part / total * 100, 2) if total else 0.0
