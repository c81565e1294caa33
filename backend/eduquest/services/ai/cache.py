"""
Two-tier, read-through / write-back cache for slowly changing AI lookups.

Tiers:
- Ephemeral: fast device-local key/value store (Redis or in-process),
  entries pruned by TTL-on-read only.
- Durable: shared Supabase tables with a uniqueness constraint on the
  composite key, pruned by staleness-on-read only.

Cache keys (curriculum metadata):
- Subjects: eduquest:subjects:{board}-{class}-{lang}
- Chapters: eduquest:chapters:{board}-{class}-{subject}-{lang}

TTL:
- Ephemeral: 7 days
- Durable staleness: 90 days

Tier failures are logged and degrade to a miss (reads) or a skipped write;
they never fail the request. Compute failures propagate unchanged and a stale
durable value is never substituted for them.
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Tuple

from eduquest.core.logging import get_logger
from eduquest.core.metrics import record_cache_hit, record_cache_miss
from eduquest.core.tracing import start_span
from eduquest.services.ai.cancellation import CancellationToken
from eduquest.services.ai.envelope import ExecutionEnvelope
from eduquest.services.ai.errors import OperationCancelledError
from eduquest.services.ai.outcome import OutcomeStatus

logger = get_logger(__name__)

EPHEMERAL_TTL_SECONDS = 7 * 24 * 60 * 60  # 7 days
DURABLE_STALE_SECONDS = 90 * 24 * 60 * 60  # 90 days

KEY_PREFIX = "eduquest"

# namespace -> (table, value column, conflict columns)
DURABLE_TABLES: Dict[str, Tuple[str, str, Tuple[str, ...]]] = {
    "subjects": ("subjects", "subjects_list", ("board", "class", "lang")),
    "chapters": ("chapters", "chapters_list", ("board", "class", "lang", "subject")),
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (as stored by Postgres or by this module)."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, (list, dict, str)) and len(value) == 0)


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    written_at: datetime

    def is_fresh(self, now: datetime, max_age_seconds: float) -> bool:
        return now - self.written_at < timedelta(seconds=max_age_seconds)


@dataclass(frozen=True)
class CurriculumKey:
    """Composite cache key built from the request dimensions."""

    namespace: str
    board: str
    class_num: int
    lang: str
    subject: Optional[str] = None

    @property
    def cache_key(self) -> str:
        if self.subject is None:
            suffix = f"{self.board}-{self.class_num}-{self.lang}"
        else:
            suffix = f"{self.board}-{self.class_num}-{self.subject}-{self.lang}"
        return f"{KEY_PREFIX}:{self.namespace}:{suffix}"

    @classmethod
    def subjects(cls, board: str, class_num: int, lang: str) -> "CurriculumKey":
        return cls("subjects", board, class_num, lang)

    @classmethod
    def chapters(cls, board: str, class_num: int, subject: str, lang: str) -> "CurriculumKey":
        return cls("chapters", board, class_num, lang, subject)


class KeyValueClient(Protocol):
    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool: ...


class EphemeralTier:
    """Stores `{value, written_at}` documents in a key/value client."""

    def __init__(self, client: KeyValueClient):
        self._client = client

    async def read(self, key: CurriculumKey) -> Optional[CacheEntry]:
        raw = await self._client.get(key.cache_key)
        if not isinstance(raw, dict) or "value" not in raw:
            return None
        written_at = parse_timestamp(raw.get("written_at"))
        if written_at is None:
            return None
        return CacheEntry(key.cache_key, raw["value"], written_at)

    async def write(self, key: CurriculumKey, value: Any, written_at: datetime) -> bool:
        return await self._client.set(
            key.cache_key,
            {"value": value, "written_at": written_at.isoformat()},
        )


class DurableTier(Protocol):
    async def get(self, key: CurriculumKey) -> Optional[CacheEntry]: ...

    async def upsert(self, key: CurriculumKey, value: Any, written_at: datetime) -> None: ...


class InMemoryDurableTier:
    """Durable-tier stand-in keyed by the composite key."""

    def __init__(self):
        self.rows: Dict[CurriculumKey, CacheEntry] = {}

    async def get(self, key: CurriculumKey) -> Optional[CacheEntry]:
        return self.rows.get(key)

    async def upsert(self, key: CurriculumKey, value: Any, written_at: datetime) -> None:
        self.rows[key] = CacheEntry(key.cache_key, value, written_at)


class SupabaseDurableTier:
    """
    Durable tier on Supabase tables.

    The supabase client is synchronous, so each query runs in a worker thread.
    """

    def __init__(self, client: Any):
        self._client = client

    @staticmethod
    def _table_for(key: CurriculumKey) -> Tuple[str, str, Tuple[str, ...]]:
        try:
            return DURABLE_TABLES[key.namespace]
        except KeyError:
            raise ValueError(f"No durable table for cache namespace {key.namespace!r}") from None

    @staticmethod
    def _key_columns(key: CurriculumKey) -> Dict[str, Any]:
        columns: Dict[str, Any] = {"board": key.board, "class": key.class_num, "lang": key.lang}
        if key.subject is not None:
            columns["subject"] = key.subject
        return columns

    async def get(self, key: CurriculumKey) -> Optional[CacheEntry]:
        table, column, _ = self._table_for(key)

        def _select() -> Any:
            query = self._client.table(table).select(f"{column}, updated_at")
            for name, value in self._key_columns(key).items():
                query = query.eq(name, value)
            return query.limit(1).execute()

        response = await asyncio.to_thread(_select)
        rows = getattr(response, "data", None) or []
        if not rows:
            return None
        row = rows[0]
        written_at = parse_timestamp(row.get("updated_at"))
        if written_at is None:
            return None
        return CacheEntry(key.cache_key, row.get(column), written_at)

    async def upsert(self, key: CurriculumKey, value: Any, written_at: datetime) -> None:
        table, column, conflict_columns = self._table_for(key)
        row = self._key_columns(key)
        row[column] = value
        row["updated_at"] = written_at.isoformat()

        def _upsert() -> Any:
            return (
                self._client.table(table)
                .upsert(row, on_conflict=",".join(conflict_columns))
                .execute()
            )

        await asyncio.to_thread(_upsert)


class TwoTierResultCache:
    """Ephemeral tier, then durable tier, then compute; write back on success."""

    def __init__(
        self,
        ephemeral: EphemeralTier,
        durable: Optional[DurableTier] = None,
        ephemeral_ttl_seconds: float = EPHEMERAL_TTL_SECONDS,
        durable_stale_seconds: float = DURABLE_STALE_SECONDS,
        clock: Callable[[], datetime] = utc_now,
        envelope: Optional[ExecutionEnvelope] = None,
    ):
        self._ephemeral = ephemeral
        self._durable = durable
        self.ephemeral_ttl_seconds = ephemeral_ttl_seconds
        self.durable_stale_seconds = durable_stale_seconds
        self._clock = clock
        self._envelope = envelope or ExecutionEnvelope()

    async def _tier_call(
        self,
        operation: str,
        key: CurriculumKey,
        call: Callable[[], Awaitable[Any]],
        token: Optional[CancellationToken],
    ) -> Any:
        """Run one tier operation; cancellation propagates, failures become None."""
        outcome = await self._envelope.run(call, None, token)
        if outcome.status is OutcomeStatus.CANCELLED:
            raise OperationCancelledError()
        if outcome.status is OutcomeStatus.FAILED:
            logger.warning(
                "cache_tier_error",
                operation=operation,
                key=key.cache_key,
                error=str(outcome.exception),
                error_type=type(outcome.exception).__name__,
            )
            return None
        return outcome.value

    async def resolve(
        self,
        key: CurriculumKey,
        compute: Callable[[], Awaitable[Any]],
        *,
        ttl_ephemeral: Optional[float] = None,
        stale_after_durable: Optional[float] = None,
        token: Optional[CancellationToken] = None,
    ) -> Any:
        """
        Return the cached value for `key`, computing and storing it on a miss.

        Raises:
            OperationCancelledError: the token fired at any suspension point
            Exception: whatever `compute()` raised
        """
        ttl = ttl_ephemeral if ttl_ephemeral is not None else self.ephemeral_ttl_seconds
        stale_after = stale_after_durable if stale_after_durable is not None else self.durable_stale_seconds

        with start_span("ai.cache_resolve", {"ai.cache.namespace": key.namespace}) as span:
            if token is not None:
                token.raise_if_cancelled()

            entry = await self._tier_call("ephemeral_read", key, lambda: self._ephemeral.read(key), token)
            if entry is not None and not _is_empty(entry.value) and entry.is_fresh(self._clock(), ttl):
                record_cache_hit(key.namespace, "ephemeral")
                span.set_attribute("ai.cache.tier", "ephemeral")
                logger.debug("cache_hit", tier="ephemeral", key=key.cache_key)
                return entry.value

            if self._durable is not None:
                durable = self._durable
                entry = await self._tier_call("durable_read", key, lambda: durable.get(key), token)
                if entry is not None and not _is_empty(entry.value):
                    if entry.is_fresh(self._clock(), stale_after):
                        record_cache_hit(key.namespace, "durable")
                        span.set_attribute("ai.cache.tier", "durable")
                        logger.debug("cache_hit", tier="durable", key=key.cache_key)
                        await self._write_ephemeral(key, entry.value, token)
                        return entry.value
                    logger.info(
                        "cache_durable_stale",
                        key=key.cache_key,
                        written_at=entry.written_at.isoformat(),
                    )

            record_cache_miss(key.namespace)
            span.set_attribute("ai.cache.tier", "miss")
            logger.debug("cache_miss", key=key.cache_key)

            value = await compute()
            if token is not None:
                token.raise_if_cancelled()

            await self._write_ephemeral(key, value, token)
            if self._durable is not None:
                durable = self._durable
                written_at = self._clock()
                await self._tier_call(
                    "durable_upsert",
                    key,
                    lambda: durable.upsert(key, value, written_at),
                    token,
                )
            return value

    async def _write_ephemeral(
        self,
        key: CurriculumKey,
        value: Any,
        token: Optional[CancellationToken],
    ) -> None:
        written_at = self._clock()
        stored = await self._tier_call(
            "ephemeral_write",
            key,
            lambda: self._ephemeral.write(key, value, written_at),
            token,
        )
        if stored is False:
            logger.warning("cache_set_failed", tier="ephemeral", key=key.cache_key)
