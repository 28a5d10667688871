"""
Persistent cache store backed by SQLAlchemy.

Shared by every process pointing at the same database, so it is the
cross-process convergence point that the in-process deduplicator is not.
Blocking database work runs in a worker thread via ``asyncio.to_thread``.
"""
import asyncio
import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterator, Optional

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from sportshub.errors import StoreError
from sportshub.models import ApiFootballCache
from .core import CacheEntrySnapshot, as_utc, utc_now
from .keys import params_key

logger = logging.getLogger("cache.store")


@contextmanager
def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    """Commit on success, roll back and raise StoreError on any SQLAlchemy failure."""
    session = session_factory()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        raise StoreError(f"Cache store failure: {e}") from e
    finally:
        session.close()


class CacheStore:
    """
    Durable (endpoint, params) -> payload store with expiry and hit counting.

    All public methods are coroutines; failures surface as StoreError.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Args:
            session_factory: SQLAlchemy session factory for the cache database
            clock: Returns the current time (aware or naive UTC)
        """
        self._session_factory = session_factory
        self._clock = clock

    def _now(self) -> datetime:
        # Stored as naive UTC; SQLite has no timezone support
        return as_utc(self._clock()).replace(tzinfo=None)

    def _session(self):
        return session_scope(self._session_factory)

    @staticmethod
    def _query(session: Session, endpoint: str, key: str):
        return session.query(ApiFootballCache).filter(
            ApiFootballCache.endpoint == endpoint,
            ApiFootballCache.params_key == key,
        )

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        """
        Return the cached payload, or None on miss.

        An expired row counts as a miss and is deleted. A hit increments
        the row's ``hit_count``.

        Raises:
            StoreError: If the database read fails
        """
        return await asyncio.to_thread(self._get_sync, endpoint, params_key(params))

    def _get_sync(self, endpoint: str, key: str) -> Optional[Any]:
        now = self._now()
        with self._session() as session:
            row = self._query(session, endpoint, key).first()
            if row is None:
                logger.debug(f"CACHE MISS: {endpoint} {key}")
                return None

            if row.expires_at <= now:
                session.delete(row)
                logger.info(f"CACHE EXPIRED: {endpoint} {key}")
                return None

            # Atomic increment; concurrent readers in other processes may race
            self._query(session, endpoint, key).update(
                {ApiFootballCache.hit_count: ApiFootballCache.hit_count + 1},
                synchronize_session=False,
            )
            logger.info(f"CACHE HIT: {endpoint} {key}")
            return row.response_data

    async def entry(
        self, endpoint: str, params: Optional[Dict[str, Any]] = None
    ) -> Optional[CacheEntrySnapshot]:
        """Snapshot of a stored row without touching its hit counter or expiry."""
        return await asyncio.to_thread(self._entry_sync, endpoint, params_key(params))

    def _entry_sync(self, endpoint: str, key: str) -> Optional[CacheEntrySnapshot]:
        with self._session() as session:
            row = self._query(session, endpoint, key).first()
            if row is None:
                return None
            return CacheEntrySnapshot(
                endpoint=row.endpoint,
                params_key=row.params_key,
                payload=row.response_data,
                cached_at=as_utc(row.cached_at),
                expires_at=as_utc(row.expires_at),
                ttl_seconds=row.ttl_seconds,
                hit_count=row.hit_count,
            )

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    async def put(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]],
        payload: Any,
        ttl_seconds: int,
    ) -> None:
        """
        Insert or overwrite the entry for (endpoint, params).

        Sets ``cached_at`` to now, ``expires_at`` to now + ttl and resets
        ``hit_count`` to 0.

        Raises:
            StoreError: If the database write fails
        """
        await asyncio.to_thread(self._put_sync, endpoint, params_key(params), payload, ttl_seconds)

    def _put_sync(self, endpoint: str, key: str, payload: Any, ttl_seconds: int) -> None:
        now = self._now()
        values = {
            "response_data": payload,
            "cached_at": now,
            "expires_at": now + timedelta(seconds=ttl_seconds),
            "ttl_seconds": ttl_seconds,
            "hit_count": 0,
        }
        try:
            with self._session() as session:
                self._upsert(session, endpoint, key, values)
        except StoreError as e:
            if not isinstance(e.__cause__, IntegrityError):
                raise
            # Another writer inserted the row first; last write wins
            with self._session() as session:
                self._upsert(session, endpoint, key, values)
        logger.info(f"CACHE STORE: {endpoint} {key} (TTL: {ttl_seconds}s)")

    def _upsert(self, session: Session, endpoint: str, key: str, values: Dict[str, Any]) -> None:
        row = self._query(session, endpoint, key).first()
        if row is None:
            session.add(ApiFootballCache(endpoint=endpoint, params_key=key, **values))
        else:
            for name, value in values.items():
                setattr(row, name, value)

    # ------------------------------------------------------------------
    # Invalidation / maintenance
    # ------------------------------------------------------------------

    async def invalidate(
        self,
        endpoint: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> int:
        """
        Delete cache entries.

        - endpoint and params: the exact entry
        - endpoint only: every entry for that endpoint
        - neither: everything

        Returns:
            Number of entries deleted

        Raises:
            ValueError: If params are given without an endpoint
        """
        if endpoint is None and params is not None:
            raise ValueError("params require an endpoint")
        key = params_key(params) if params is not None else None
        return await asyncio.to_thread(self._invalidate_sync, endpoint, key)

    def _invalidate_sync(self, endpoint: Optional[str], key: Optional[str]) -> int:
        with self._session() as session:
            query = session.query(ApiFootballCache)
            if endpoint is not None:
                query = query.filter(ApiFootballCache.endpoint == endpoint)
            if key is not None:
                query = query.filter(ApiFootballCache.params_key == key)
            deleted = query.delete(synchronize_session=False)

        if endpoint is None:
            logger.info(f"Cleared all cache ({deleted} entries)")
        elif key is None:
            logger.info(f"Cleared {deleted} entries for: {endpoint}")
        else:
            logger.info(f"Cleared: {endpoint} {key}")
        return deleted

    async def purge_expired(self, grace_seconds: int = 0) -> int:
        """
        Physically delete rows that expired more than ``grace_seconds`` ago.

        Returns:
            Number of rows deleted
        """
        return await asyncio.to_thread(self._purge_expired_sync, grace_seconds)

    def _purge_expired_sync(self, grace_seconds: int) -> int:
        cutoff = self._now() - timedelta(seconds=grace_seconds)
        with self._session() as session:
            deleted = (
                session.query(ApiFootballCache)
                .filter(ApiFootballCache.expires_at <= cutoff)
                .delete(synchronize_session=False)
            )
        if deleted:
            logger.info(f"Purged {deleted} expired cache entries")
        return deleted

    async def stats(self) -> Dict[str, int]:
        """
        Aggregate counters.

        ``valid``/``expired`` use the same ``expires_at <= now`` test as get().
        """
        return await asyncio.to_thread(self._stats_sync)

    def _stats_sync(self) -> Dict[str, int]:
        now = self._now()
        with self._session() as session:
            total, expired, total_hits = session.query(
                func.count(ApiFootballCache.id),
                func.sum(case((ApiFootballCache.expires_at <= now, 1), else_=0)),
                func.sum(ApiFootballCache.hit_count),
            ).one()

        total = total or 0
        expired = int(expired or 0)
        return {
            "total": total,
            "valid": total - expired,
            "expired": expired,
            "totalHits": int(total_hits or 0),
        }
