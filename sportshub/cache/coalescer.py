"""
Request deduplication to prevent duplicate upstream API calls.

When multiple concurrent requests ask for the same data, only one
upstream call is made and all requesters share the result.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from .metrics import ApiMetrics

logger = logging.getLogger("cache.coalescer")

T = TypeVar("T")

DEFAULT_WINDOW_SECONDS = 5.0
DEFAULT_SWEEP_INTERVAL_SECONDS = 10.0


@dataclass
class PendingRequest:
    """Tracks an in-progress operation."""
    key: str
    started_at: float
    task: Optional["asyncio.Task[Any]"] = None
    waiter_count: int = 0


class RequestDeduplicator:
    """
    Ensures concurrent requests for the same key share one operation.

    Pattern:
    - First request for a key starts the operation as a task
    - Later requests within the dedup window await the same task
    - The registry entry is removed in a ``finally`` as soon as the
      task settles, so a failure never poisons the next attempt
    - A periodic sweep drops entries older than the window; this stops
      new callers joining a hung operation but does not cancel it

    Usage:
        async with RequestDeduplicator() as dedup:
            data = await dedup.dedupe("fixtures:{...}", fetch)
    """

    def __init__(
        self,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional[ApiMetrics] = None,
    ):
        """
        Initialize the deduplicator.

        Args:
            window_seconds: Max age of an in-flight operation new callers may join
            sweep_interval_seconds: How often the background sweep runs
            clock: Monotonic time source (seconds)
            metrics: Optional sink for dedupe hit/miss events
        """
        self._pending: Dict[str, PendingRequest] = {}
        self._window = window_seconds
        self._sweep_interval = sweep_interval_seconds
        self._clock = clock
        self._metrics = metrics
        self._sweeper: Optional["asyncio.Task[None]"] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic sweep. Must be called from a running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def dispose(self) -> None:
        """Stop the sweep and forget all pending entries."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        self._pending.clear()

    async def __aenter__(self) -> "RequestDeduplicator":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.dispose()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.cleanup()

    # ------------------------------------------------------------------
    # Deduplication
    # ------------------------------------------------------------------

    async def dedupe(self, key: str, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Either join an existing in-flight operation or start a new one.

        Args:
            key: Unique key for this request
            operation: Zero-arg coroutine function performing the fetch

        Returns:
            The operation's result (shared among all concurrent callers)

        Raises:
            Exception: Any error from the operation, delivered to every waiter
        """
        now = self._clock()
        pending = self._pending.get(key)

        if pending is not None and now - pending.started_at < self._window:
            pending.waiter_count += 1
            logger.debug(f"Dedupe HIT {key} (waiters: {pending.waiter_count})")
            if self._metrics:
                self._metrics.log_dedupe(key, hit=True)
            return await asyncio.shield(pending.task)

        logger.debug(f"Dedupe MISS {key} - initiating fetch")
        if self._metrics:
            self._metrics.log_dedupe(key, hit=False)

        pending = PendingRequest(key=key, started_at=now)
        pending.task = asyncio.ensure_future(self._run(pending, operation))
        self._pending[key] = pending

        # Shield so a cancelled waiter never cancels the shared operation
        return await asyncio.shield(pending.task)

    async def _run(self, pending: PendingRequest, operation: Callable[[], Awaitable[T]]) -> T:
        try:
            return await operation()
        except Exception as e:
            logger.warning(f"Operation failed for {pending.key}: {e}")
            raise
        finally:
            self._release(pending)

    def _release(self, pending: PendingRequest) -> None:
        # Only remove our own entry; a newer request may have replaced it
        if self._pending.get(pending.key) is pending:
            del self._pending[pending.key]

    def cleanup(self) -> int:
        """
        Remove entries older than the dedup window.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        stale = [
            key for key, pending in self._pending.items()
            if now - pending.started_at > self._window
        ]
        for key in stale:
            del self._pending[key]

        if stale:
            logger.info(f"Dedupe cleanup removed {len(stale)} stale entries")
        return len(stale)

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight operations."""
        return len(self._pending)

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    def stats(self) -> Dict[str, Any]:
        """Get deduplicator statistics."""
        if not self._pending:
            return {"pendingCount": 0, "oldestAgeMs": None}

        now = self._clock()
        oldest = max(now - p.started_at for p in self._pending.values())
        return {
            "pendingCount": len(self._pending),
            "oldestAgeMs": round(oldest * 1000, 1),
        }
