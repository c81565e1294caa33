"""
Unit tests for the two-tier result cache.

Tests verify:
- Read-through order: ephemeral, then durable, then compute
- Write-back to both tiers after compute
- TTL and staleness checks on read
- Tier failures degrade to a miss; compute failures propagate
- Supabase durable tier query shape
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from eduquest.core.cache import InMemoryCacheClient
from eduquest.services.ai.cache import (
    CacheEntry,
    CurriculumKey,
    EphemeralTier,
    InMemoryDurableTier,
    SupabaseDurableTier,
    TwoTierResultCache,
)
from eduquest.services.ai.cancellation import CancellationToken
from eduquest.services.ai.errors import AllProvidersExhaustedError, OperationCancelledError

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
DAY = 24 * 60 * 60

KEY = CurriculumKey.subjects("WBBSE", 10, "en")


class Clock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


class Compute:
    def __init__(self, value=None, error=None):
        self.value = value
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.value


def _cache(clock=None, durable=None, ephemeral_client=None):
    return TwoTierResultCache(
        EphemeralTier(ephemeral_client if ephemeral_client is not None else InMemoryCacheClient()),
        durable if durable is not None else InMemoryDurableTier(),
        clock=clock or Clock(),
    )


def test_curriculum_key_format():
    assert KEY.cache_key == "eduquest:subjects:WBBSE-10-en"
    chapters = CurriculumKey.chapters("CBSE", 9, "Biology", "bn")
    assert chapters.cache_key == "eduquest:chapters:CBSE-9-Biology-bn"
    assert chapters.subject == "Biology"


@pytest.mark.asyncio
async def test_miss_computes_and_writes_both_tiers():
    durable = InMemoryDurableTier()
    ephemeral_client = InMemoryCacheClient()
    cache = _cache(durable=durable, ephemeral_client=ephemeral_client)
    compute = Compute(["Biology", "Physics"])

    result = await cache.resolve(KEY, compute)

    assert result == ["Biology", "Physics"]
    assert compute.calls == 1
    assert durable.rows[KEY].value == ["Biology", "Physics"]
    stored = await ephemeral_client.get(KEY.cache_key)
    assert stored["value"] == ["Biology", "Physics"]


@pytest.mark.asyncio
async def test_second_resolve_is_served_from_ephemeral():
    cache = _cache()
    compute = Compute(["Biology"])

    await cache.resolve(KEY, compute)
    result = await cache.resolve(KEY, compute)

    assert result == ["Biology"]
    assert compute.calls == 1


@pytest.mark.asyncio
async def test_expired_ephemeral_falls_through_to_durable_and_backfills():
    clock = Clock()
    durable = InMemoryDurableTier()
    ephemeral_client = InMemoryCacheClient()
    cache = _cache(clock=clock, durable=durable, ephemeral_client=ephemeral_client)

    await ephemeral_client.set(
        KEY.cache_key,
        {"value": ["Old"], "written_at": (NOW - timedelta(days=8)).isoformat()},
    )
    await durable.upsert(KEY, ["Biology"], NOW - timedelta(days=30))
    compute = Compute(["never"])

    result = await cache.resolve(KEY, compute)

    assert result == ["Biology"]
    assert compute.calls == 0
    backfilled = await ephemeral_client.get(KEY.cache_key)
    assert backfilled["value"] == ["Biology"]
    assert backfilled["written_at"] == NOW.isoformat()


@pytest.mark.asyncio
async def test_stale_durable_entry_is_recomputed():
    durable = InMemoryDurableTier()
    await durable.upsert(KEY, ["Stale"], NOW - timedelta(days=91))
    cache = _cache(durable=durable)
    compute = Compute(["Fresh"])

    result = await cache.resolve(KEY, compute)

    assert result == ["Fresh"]
    assert compute.calls == 1
    assert durable.rows[KEY].value == ["Fresh"]
    assert durable.rows[KEY].written_at == NOW


@pytest.mark.asyncio
async def test_compute_failure_propagates_and_stale_value_is_not_used():
    durable = InMemoryDurableTier()
    await durable.upsert(KEY, ["Stale"], NOW - timedelta(days=120))
    cache = _cache(durable=durable)
    error = AllProvidersExhaustedError("Subject List Generation failed")

    with pytest.raises(AllProvidersExhaustedError):
        await cache.resolve(KEY, Compute(error=error))

    assert durable.rows[KEY].value == ["Stale"]


@pytest.mark.asyncio
async def test_empty_durable_value_is_treated_as_absent():
    durable = InMemoryDurableTier()
    await durable.upsert(KEY, [], NOW)
    cache = _cache(durable=durable)
    compute = Compute(["Biology"])

    assert await cache.resolve(KEY, compute) == ["Biology"]
    assert compute.calls == 1


@pytest.mark.asyncio
async def test_ttl_overrides():
    clock = Clock()
    cache = _cache(clock=clock)
    compute = Compute(["Biology"])
    await cache.resolve(KEY, compute)

    clock.now = NOW + timedelta(seconds=120)
    await cache.resolve(KEY, compute, ttl_ephemeral=60, stale_after_durable=60)

    assert compute.calls == 2


@pytest.mark.asyncio
async def test_tier_failures_degrade_to_miss():
    ephemeral_client = MagicMock()
    ephemeral_client.get = AsyncMock(side_effect=ConnectionError("redis down"))
    ephemeral_client.set = AsyncMock(side_effect=ConnectionError("redis down"))
    durable = MagicMock()
    durable.get = AsyncMock(side_effect=RuntimeError("supabase down"))
    durable.upsert = AsyncMock(side_effect=RuntimeError("supabase down"))
    cache = TwoTierResultCache(EphemeralTier(ephemeral_client), durable, clock=Clock())
    compute = Compute(["Biology"])

    result = await cache.resolve(KEY, compute)

    assert result == ["Biology"]
    assert compute.calls == 1
    durable.upsert.assert_awaited_once()


@pytest.mark.asyncio
async def test_cancelled_token_is_not_swallowed():
    token = CancellationToken()
    token.cancel()
    compute = Compute(["Biology"])

    with pytest.raises(OperationCancelledError):
        await _cache().resolve(KEY, compute, token=token)

    assert compute.calls == 0


@pytest.mark.asyncio
async def test_cancel_during_compute_skips_write_back():
    token = CancellationToken()
    durable = InMemoryDurableTier()

    async def compute():
        token.cancel()
        return ["Biology"]

    with pytest.raises(OperationCancelledError):
        await _cache(durable=durable).resolve(KEY, compute, token=token)

    assert durable.rows == {}


def test_cache_entry_freshness():
    entry = CacheEntry("k", ["v"], NOW)

    assert entry.is_fresh(NOW + timedelta(days=6), 7 * DAY)
    assert not entry.is_fresh(NOW + timedelta(days=7), 7 * DAY)


class TestSupabaseDurableTier:
    """Query shape against a mocked supabase client."""

    @staticmethod
    def _client(rows):
        client = MagicMock()
        query = client.table.return_value
        query.select.return_value = query
        query.eq.return_value = query
        query.limit.return_value = query
        query.upsert.return_value = query
        query.execute.return_value = MagicMock(data=rows)
        return client, query

    @pytest.mark.asyncio
    async def test_get_reads_row(self):
        client, query = self._client([
            {"chapters_list": ["Evolution"], "updated_at": "2024-05-01T00:00:00+00:00"},
        ])
        tier = SupabaseDurableTier(client)
        key = CurriculumKey.chapters("WBBSE", 10, "Life Science", "en")

        entry = await tier.get(key)

        client.table.assert_called_with("chapters")
        query.select.assert_called_with("chapters_list, updated_at")
        query.eq.assert_any_call("subject", "Life Science")
        query.eq.assert_any_call("class", 10)
        assert entry.value == ["Evolution"]
        assert entry.written_at == datetime(2024, 5, 1, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_get_missing_row(self):
        client, _ = self._client([])

        assert await SupabaseDurableTier(client).get(KEY) is None

    @pytest.mark.asyncio
    async def test_upsert_uses_composite_conflict_key(self):
        client, query = self._client([])
        tier = SupabaseDurableTier(client)

        await tier.upsert(KEY, ["Biology"], NOW)

        client.table.assert_called_with("subjects")
        row = query.upsert.call_args.args[0]
        assert row == {
            "board": "WBBSE",
            "class": 10,
            "lang": "en",
            "subjects_list": ["Biology"],
            "updated_at": NOW.isoformat(),
        }
        assert query.upsert.call_args.kwargs["on_conflict"] == "board,class,lang"

    @pytest.mark.asyncio
    async def test_unknown_namespace(self):
        client, _ = self._client([])

        with pytest.raises(ValueError):
            await SupabaseDurableTier(client).get(CurriculumKey("flashcards", "WBBSE", 10, "en"))


@pytest.mark.asyncio
async def test_empty_supplied_ephemeral_client_receives_writes():
    client = InMemoryCacheClient()
    cache = _cache(ephemeral_client=client)

    await cache.resolve(KEY, Compute(["Physics"]))

    assert len(client) == 1
