"""
Tests for the persistent cache store.
"""
from datetime import timedelta

import pytest

from sportshub.cache import CacheStore
from sportshub.errors import StoreError

PAYLOAD = [{"fixture": {"id": 12345, "status": {"short": "FT"}}}]


class TestReadWrite:

    @pytest.mark.asyncio
    async def test_put_then_get(self, store):
        await store.put("/fixtures", {"id": 12345}, PAYLOAD, 3600)
        assert await store.get("/fixtures", {"id": 12345}) == PAYLOAD

    @pytest.mark.asyncio
    async def test_miss_returns_none(self, store):
        assert await store.get("/fixtures", {"id": 1}) is None
        assert await store.entry("/fixtures", {"id": 1}) is None

    @pytest.mark.asyncio
    async def test_param_order_does_not_matter(self, store):
        await store.put("/fixtures", {"league": 39, "season": 2024}, PAYLOAD, 3600)
        assert await store.get("/fixtures", {"season": 2024, "league": 39}) == PAYLOAD

    @pytest.mark.asyncio
    async def test_hits_are_counted(self, store):
        await store.put("/fixtures", {"id": 12345}, PAYLOAD, 3600)
        await store.get("/fixtures", {"id": 12345})
        await store.get("/fixtures", {"id": 12345})

        entry = await store.entry("/fixtures", {"id": 12345})
        assert entry.hit_count == 2
        assert (await store.stats())["totalHits"] == 2

    @pytest.mark.asyncio
    async def test_put_is_an_upsert(self, store):
        await store.put("/fixtures", {"id": 12345}, ["old"], 60)
        await store.get("/fixtures", {"id": 12345})
        await store.put("/fixtures", {"id": 12345}, ["new"], 3600)

        entry = await store.entry("/fixtures", {"id": 12345})
        assert entry.payload == ["new"]
        assert entry.ttl_seconds == 3600
        assert entry.hit_count == 0
        assert (await store.stats())["total"] == 1

    @pytest.mark.asyncio
    async def test_entry_timestamps(self, store, clock):
        await store.put("/fixtures", {"id": 12345}, PAYLOAD, 86400)

        entry = await store.entry("/fixtures", {"id": 12345})
        assert entry.cached_at == clock.current
        assert entry.expires_at - entry.cached_at == timedelta(hours=24)
        assert entry.to_dict()["ttlSeconds"] == 86400


class TestExpiry:

    @pytest.mark.asyncio
    async def test_expired_entry_is_a_miss_and_removed(self, store, clock):
        await store.put("/fixtures", {"id": 12345}, PAYLOAD, 60)
        clock.advance(seconds=61)

        assert await store.get("/fixtures", {"id": 12345}) is None
        assert (await store.stats())["total"] == 0

    @pytest.mark.asyncio
    async def test_entry_expires_exactly_at_expiry(self, store, clock):
        await store.put("/fixtures", {"id": 12345}, PAYLOAD, 60)
        clock.advance(seconds=60)

        assert await store.get("/fixtures", {"id": 12345}) is None

    @pytest.mark.asyncio
    async def test_stats_agree_with_reads(self, store, clock):
        await store.put("/fixtures", {"id": 1}, PAYLOAD, 60)
        await store.put("/fixtures", {"id": 2}, PAYLOAD, 3600)
        clock.advance(seconds=60)

        stats = await store.stats()
        assert stats == {"total": 2, "valid": 1, "expired": 1, "totalHits": 0}
        assert await store.get("/fixtures", {"id": 1}) is None
        assert await store.get("/fixtures", {"id": 2}) == PAYLOAD

    @pytest.mark.asyncio
    async def test_purge_expired(self, store, clock):
        await store.put("/fixtures", {"id": 1}, PAYLOAD, 60)
        await store.put("/fixtures", {"id": 2}, PAYLOAD, 3600)
        clock.advance(minutes=5)

        assert await store.purge_expired() == 1
        assert (await store.stats())["total"] == 1

    @pytest.mark.asyncio
    async def test_purge_respects_grace(self, store, clock):
        await store.put("/fixtures", {"id": 1}, PAYLOAD, 60)
        clock.advance(minutes=5)

        assert await store.purge_expired(grace_seconds=3600) == 0
        assert await store.purge_expired() == 1


class TestInvalidate:

    @pytest.mark.asyncio
    async def test_exact_entry(self, store):
        await store.put("/fixtures", {"id": 1}, PAYLOAD, 3600)
        await store.put("/fixtures", {"id": 2}, PAYLOAD, 3600)

        assert await store.invalidate("/fixtures", {"id": 1}) == 1
        assert await store.get("/fixtures", {"id": 1}) is None
        assert await store.get("/fixtures", {"id": 2}) == PAYLOAD

    @pytest.mark.asyncio
    async def test_whole_endpoint(self, store):
        await store.put("/fixtures", {"id": 1}, PAYLOAD, 3600)
        await store.put("/fixtures", {"id": 2}, PAYLOAD, 3600)
        await store.put("/standings", {"league": 39}, [], 21600)

        assert await store.invalidate("/fixtures") == 2
        assert (await store.stats())["total"] == 1

    @pytest.mark.asyncio
    async def test_everything(self, store):
        await store.put("/fixtures", {"id": 1}, PAYLOAD, 3600)
        await store.put("/standings", {"league": 39}, [], 21600)

        assert await store.invalidate() == 2
        assert (await store.stats())["total"] == 0

    @pytest.mark.asyncio
    async def test_params_without_endpoint_rejected(self, store):
        with pytest.raises(ValueError):
            await store.invalidate(params={"id": 1})


class TestFailures:

    @pytest.mark.asyncio
    async def test_database_errors_surface_as_store_error(self, broken_session_factory):
        broken = CacheStore(broken_session_factory)

        with pytest.raises(StoreError):
            await broken.get("/fixtures", {"id": 1})
        with pytest.raises(StoreError):
            await broken.put("/fixtures", {"id": 1}, PAYLOAD, 60)
        with pytest.raises(StoreError):
            await broken.stats()
