"""Record store for complaints and payments.

Two backends implement the :class:`RecordStore` protocol:

* :class:`InMemoryRecordStore` -- process-local dicts guarded by an
  :class:`asyncio.Lock`; the default for development and tests.
* :class:`RedisRecordStore` -- ``redis.asyncio`` with records serialised
  by ``orjson``; ids come from ``INCR`` and ordering from a sorted set.

Both expose ``update_if_status``, a compare-and-swap on the ``status``
field.  It is the only concurrency primitive the lifecycle controller
relies on: of N concurrent callers expecting the same prior status, at
most one gets a record back.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Any, Final, Protocol, runtime_checkable

import orjson
import structlog

logger = structlog.get_logger(__name__)

COMPLAINTS: Final[str] = "complaints"
PAYMENTS: Final[str] = "payments"

Record = dict[str, Any]


# ---------------------------------------------------------------------------
# Store protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class RecordStore(Protocol):
    """Async record store interface."""

    async def insert(self, table: str, fields: Record) -> Record: ...

    async def get_by_id(self, table: str, record_id: int) -> Record | None: ...

    async def update_by_id(self, table: str, record_id: int, fields: Record) -> Record | None: ...

    async def update_if_status(
        self,
        table: str,
        record_id: int,
        expected_status: str,
        fields: Record,
    ) -> Record | None: ...

    async def list_all(self, table: str) -> list[Record]: ...

    async def close(self) -> None: ...


def _now() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class InMemoryRecordStore:
    """Dict-backed store with per-table auto-increment ids.

    A single :class:`asyncio.Lock` serialises every read-modify-write,
    which makes ``update_if_status`` atomic within one event loop.
    """

    __slots__ = ("_lock", "_sequences", "_tables")

    def __init__(self) -> None:
        self._tables: dict[str, dict[int, Record]] = {}
        self._sequences: dict[str, int] = {}
        self._lock = asyncio.Lock()

    async def insert(self, table: str, fields: Record) -> Record:
        async with self._lock:
            record_id = self._sequences.get(table, 0) + 1
            self._sequences[table] = record_id
            record = {**fields, "id": record_id, "created_at": _now()}
            self._tables.setdefault(table, {})[record_id] = record
            return dict(record)

    async def get_by_id(self, table: str, record_id: int) -> Record | None:
        async with self._lock:
            record = self._tables.get(table, {}).get(record_id)
            return dict(record) if record is not None else None

    async def update_by_id(self, table: str, record_id: int, fields: Record) -> Record | None:
        async with self._lock:
            record = self._tables.get(table, {}).get(record_id)
            if record is None:
                return None
            record.update(fields)
            return dict(record)

    async def update_if_status(
        self,
        table: str,
        record_id: int,
        expected_status: str,
        fields: Record,
    ) -> Record | None:
        async with self._lock:
            record = self._tables.get(table, {}).get(record_id)
            if record is None or record.get("status") != expected_status:
                return None
            record.update(fields)
            return dict(record)

    async def list_all(self, table: str) -> list[Record]:
        async with self._lock:
            rows = self._tables.get(table, {})
            return [dict(rows[record_id]) for record_id in sorted(rows, reverse=True)]

    async def close(self) -> None:
        return None

    def size(self, table: str) -> int:
        """Return the number of records currently held in *table*."""
        return len(self._tables.get(table, {}))


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------

# KEYS[1] record key; ARGV[1] expected status ('' skips the check);
# ARGV[2] JSON object of fields to merge.  Returns the merged record or nil.
_MERGE_SCRIPT: Final[str] = """\
local raw = redis.call('GET', KEYS[1])
if not raw then
  return false
end
local record = cjson.decode(raw)
if ARGV[1] ~= '' and record['status'] ~= ARGV[1] then
  return false
end
for key, value in pairs(cjson.decode(ARGV[2])) do
  record[key] = value
end
local encoded = cjson.encode(record)
redis.call('SET', KEYS[1], encoded)
return encoded
"""


class RedisRecordStore:
    """Redis-backed store using ``redis.asyncio`` with connection pooling.

    Layout per table (under the configured namespace)::

        {ns}{table}:seq        INCR counter for ids
        {ns}{table}:ids        sorted set of ids, score = id
        {ns}{table}:{id}       orjson-encoded record
    """

    __slots__ = ("_merge", "_namespace", "_pool", "_redis")

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        *,
        namespace: str = "grievance:",
        max_connections: int = 20,
    ) -> None:
        import redis.asyncio as aioredis

        self._namespace = namespace
        self._pool = aioredis.ConnectionPool.from_url(
            url,
            max_connections=max_connections,
            decode_responses=False,
        )
        self._redis = aioredis.Redis(connection_pool=self._pool)
        self._merge = self._redis.register_script(_MERGE_SCRIPT)

    # -- keys ------------------------------------------------------------------

    def _record_key(self, table: str, record_id: int) -> str:
        return f"{self._namespace}{table}:{record_id}"

    def _ids_key(self, table: str) -> str:
        return f"{self._namespace}{table}:ids"

    def _seq_key(self, table: str) -> str:
        return f"{self._namespace}{table}:seq"

    @staticmethod
    def _decode(raw: bytes | str | None) -> Record | None:
        if raw is None:
            return None
        return orjson.loads(raw)

    # -- RecordStore interface -------------------------------------------------

    async def insert(self, table: str, fields: Record) -> Record:
        record_id = int(await self._redis.incr(self._seq_key(table)))
        record = {**fields, "id": record_id, "created_at": _now()}
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.set(self._record_key(table, record_id), orjson.dumps(record))
            pipe.zadd(self._ids_key(table), {str(record_id): record_id})
            await pipe.execute()
        logger.debug("store.inserted", table=table, record_id=record_id)
        return orjson.loads(orjson.dumps(record))

    async def get_by_id(self, table: str, record_id: int) -> Record | None:
        return self._decode(await self._redis.get(self._record_key(table, record_id)))

    async def update_by_id(self, table: str, record_id: int, fields: Record) -> Record | None:
        raw = await self._merge(
            keys=[self._record_key(table, record_id)],
            args=["", orjson.dumps(fields)],
        )
        return self._decode(raw)

    async def update_if_status(
        self,
        table: str,
        record_id: int,
        expected_status: str,
        fields: Record,
    ) -> Record | None:
        raw = await self._merge(
            keys=[self._record_key(table, record_id)],
            args=[expected_status, orjson.dumps(fields)],
        )
        return self._decode(raw)

    async def list_all(self, table: str) -> list[Record]:
        ids = await self._redis.zrevrange(self._ids_key(table), 0, -1)
        if not ids:
            return []
        raws = await self._redis.mget([self._record_key(table, int(i)) for i in ids])
        return [orjson.loads(raw) for raw in raws if raw is not None]

    # -- Lifecycle -------------------------------------------------------------

    async def close(self) -> None:
        await self._redis.aclose()
        await self._pool.aclose()

    async def ping(self) -> bool:
        """Return *True* if the Redis server is reachable."""
        try:
            return bool(await self._redis.ping())
        except Exception:
            return False


def create_record_store(redis_url: str | None, *, namespace: str = "grievance:") -> RecordStore:
    """Build the Redis store when a URL is configured, else the in-memory store."""
    if redis_url:
        logger.info("store.redis_selected", namespace=namespace)
        return RedisRecordStore(redis_url, namespace=namespace)
    logger.info("store.inmemory_selected")
    return InMemoryRecordStore()
