"""
Main cache orchestration: dedupe -> cache lookup -> upstream -> adaptive TTL -> store.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Coroutine, Dict, Optional, Protocol, Set, TypeVar

from sportshub.errors import StoreError
from .coalescer import RequestDeduplicator
from .core import utc_now
from .keys import build_key
from .metrics import ApiMetrics
from .store import CacheStore
from .ttl_policies import resolve_ttl

logger = logging.getLogger("cache.manager")

T = TypeVar("T")


class UpstreamClient(Protocol):
    """Anything that can fetch an endpoint's payload (ApiFootballClient in production)."""

    async def fetch(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        ...


class CacheManager:
    """
    Fetch orchestrator with:
    - Request deduplication for concurrent identical requests
    - Persistent cache lookup with adaptive TTL on write
    - Fire-and-forget cache writes

    Holds no cache state of its own; everything observable lives in the
    store and the deduplicator it was given.

    Consistency note: writes are spawned, not awaited, so a read of the
    same key right after a fetch returns may still miss the store.
    """

    def __init__(
        self,
        store: CacheStore,
        deduplicator: RequestDeduplicator,
        client: UpstreamClient,
        metrics: Optional[ApiMetrics] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the cache manager.

        Args:
            store: Persistent cache store
            deduplicator: In-process request deduplicator (lifecycle owned by caller)
            client: Upstream API client
            metrics: Optional metrics sink
            clock: Time source used for adaptive TTL decisions
        """
        self._store = store
        self._deduplicator = deduplicator
        self._client = client
        self._metrics = metrics
        self._clock = clock
        self._background: Set["asyncio.Task[Any]"] = set()

    @property
    def store(self) -> CacheStore:
        return self._store

    @property
    def deduplicator(self) -> RequestDeduplicator:
        return self._deduplicator

    # ------------------------------------------------------------------
    # Consumer surface
    # ------------------------------------------------------------------

    async def fetch_with_cache(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        ttl: Optional[int] = None,
    ) -> Any:
        """
        Get data from cache or fetch from upstream.

        Args:
            endpoint: API endpoint path (e.g., "/fixtures")
            params: Query parameters
            ttl: Explicit TTL in seconds. None = adaptive, 0 = bypass the
                 persistent cache entirely (always fetch, never store)

        Returns:
            The upstream payload (envelope ``response``)

        Raises:
            UpstreamError: If the upstream call fails after a cache miss
            ConfigurationError: If the API key is missing
            ValueError: If ttl is negative
        """
        if ttl is not None and ttl < 0:
            raise ValueError(f"TTL must be >= 0, got {ttl}")

        params = params or {}
        key = build_key(endpoint, params)

        async def operation() -> Any:
            return await self._load(endpoint, params, ttl)

        return await self._deduplicator.dedupe(key, operation)

    async def _load(self, endpoint: str, params: Dict[str, Any], ttl: Optional[int]) -> Any:
        if ttl == 0:
            logger.info(f"CACHE BYPASS: {endpoint} {params}")
        else:
            cached = await self._read(endpoint, params)
            if cached is not None:
                if self._metrics:
                    self._metrics.log_cache(endpoint, hit=True)
                return cached
            if self._metrics:
                self._metrics.log_cache(endpoint, hit=False)

        data = await self._client.fetch(endpoint, params)

        if ttl != 0:
            ttl_seconds = resolve_ttl(endpoint, data, ttl, self._clock())
            self.spawn(self._write(endpoint, params, data, ttl_seconds), f"store {endpoint}")
        return data

    async def _read(self, endpoint: str, params: Dict[str, Any]) -> Optional[Any]:
        try:
            return await self._store.get(endpoint, params)
        except StoreError as e:
            # Degrade to an upstream fetch
            logger.warning(f"Cache read failed for {endpoint}, treating as miss: {e}")
            return None

    async def _write(self, endpoint: str, params: Dict[str, Any], data: Any, ttl_seconds: int) -> None:
        try:
            await self._store.put(endpoint, params, data, ttl_seconds)
        except StoreError as e:
            logger.error(f"Cache write failed for {endpoint}: {e}")

    async def clear_cache(
        self,
        endpoint: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> int:
        """
        Invalidate an exact entry, a whole endpoint, or everything.

        Returns:
            Number of entries removed
        """
        return await self._store.invalidate(endpoint, params)

    async def get_cache_stats(self) -> Dict[str, int]:
        """Store counters: total, valid, expired, totalHits."""
        try:
            return await self._store.stats()
        except StoreError as e:
            logger.error(f"Failed to get cache stats: {e}")
            return {"total": 0, "valid": 0, "expired": 0, "totalHits": 0}

    async def dedupe(self, key: str, fetcher: Callable[[], Awaitable[T]]) -> T:
        """In-memory coalescing only, no persistent cache."""
        return await self._deduplicator.dedupe(key, fetcher)

    def get_stats(self) -> Dict[str, Any]:
        """In-process statistics (deduplicator, background tasks, metrics)."""
        stats: Dict[str, Any] = {
            "deduplicator": self._deduplicator.stats(),
            "backgroundTasks": len(self._background),
        }
        if self._metrics:
            stats["metrics"] = self._metrics.get_stats()
        return stats

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    def spawn(self, coro: Coroutine[Any, Any, Any], description: str = "background task") -> "asyncio.Task[Any]":
        """
        Run ``coro`` as an independent task without awaiting it.

        The task is tracked until done so it cannot be garbage collected
        mid-flight; an exception it raises is logged, never propagated.
        """
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)

        def _done(t: "asyncio.Task[Any]") -> None:
            self._background.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error(f"{description} failed: {t.exception()}")

        task.add_done_callback(_done)
        return task

    async def drain(self) -> None:
        """Wait until every spawned background task has finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        """Finish pending writes and release the upstream client."""
        await self.drain()
        close = getattr(self._client, "close", None)
        if close is not None:
            close()
