"""
Redis-backed forecast cache for the wind cache service.

Three protocols sit on top of plain TTL-bound ``SET``/``GET``/``DEL``:

- Chunking: JSON payloads above the size ceiling are split across
  ``{key}:chunk:{i}`` keys with the count at ``{key}:chunks``; for
  snapshot objects the non-list fields go to ``{key}:meta``.
- Indexed versioning: ``{base}:current_index`` holds the next free index
  and ``{base}:indices`` the history list.  Values are written to
  ``{base}:{index}`` and mirrored at ``{base}``.  Entries whose data time
  is within 2 h of an existing entry replace it instead of growing the
  history.
- Bounded history: the oldest entries beyond ``max_history`` are dropped
  and their data deleted.

Binary payloads (PNG rasters) are base64 encoded and never chunked.
Every physical key gets the same TTL, refreshed on every write.
"""
import asyncio
import base64
import binascii
import json
import logging
import math
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Union

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from windcache.errors import CacheBackendError, PayloadNotChunkable

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600
DEFAULT_MAX_PAYLOAD_BYTES = 8 * 1024 * 1024
DEFAULT_MAX_HISTORY = 20
DUPLICATE_TOLERANCE = timedelta(hours=2)

POINTS_FIELD = "points"


# =============================================================================
# Value shapes
# =============================================================================

@dataclass
class ListValue:
    """A bare JSON list; chunked by items."""
    items: List[Any]


@dataclass
class PointsObject:
    """A JSON object whose ``points`` list is chunked while the rest goes to ``:meta``."""
    meta: Dict[str, Any]
    points: List[Any] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {**self.meta, POINTS_FIELD: self.points}


@dataclass
class OpaqueValue:
    """Any other JSON value; stored whole or rejected when oversized."""
    value: Any


ChunkableValue = Union[ListValue, PointsObject, OpaqueValue]


def _plain(value: ChunkableValue) -> Any:
    if isinstance(value, ListValue):
        return value.items
    if isinstance(value, PointsObject):
        return value.as_dict()
    return value.value


# Grid payloads run to tens of MB; (de)serialization happens off the event loop.
def _serialize(value: ChunkableValue) -> str:
    return json.dumps(_plain(value))


def _serialize_chunks(chunks: List[List[Any]]) -> List[str]:
    return [json.dumps(chunk) for chunk in chunks]


def _deserialize(raw: str) -> Any:
    return json.loads(raw)


def _descriptor(value: ChunkableValue) -> Dict[str, Any]:
    """Snapshot fields used to build an index entry."""
    if isinstance(value, PointsObject):
        return value.meta
    if isinstance(value, OpaqueValue) and isinstance(value.value, dict):
        return value.value
    return {}


def _count_points(value: ChunkableValue) -> int:
    if isinstance(value, ListValue):
        return len(value.items)
    if isinstance(value, PointsObject):
        return len(value.points)
    if isinstance(value.value, list):
        return len(value.value)
    if isinstance(value.value, dict) and isinstance(value.value.get(POINTS_FIELD), list):
        return len(value.value[POINTS_FIELD])
    return 0


# =============================================================================
# Index entries
# =============================================================================

def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO-8601 string to aware datetime (naive values are taken as UTC)."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def within_tolerance(a: Optional[datetime], b: Optional[datetime]) -> bool:
    if a is None or b is None:
        return False
    return abs(a - b) < DUPLICATE_TOLERANCE


@dataclass
class IndexEntry:
    """One historical version in a ``{base}:indices`` list."""
    index: int
    timestamp: str
    data_points: int
    run_name: Optional[str] = None
    data_time: Optional[str] = None
    hours_back: Optional[float] = None
    forecast_offset: Optional[int] = None
    run_age: Optional[int] = None

    @property
    def data_datetime(self) -> Optional[datetime]:
        return parse_timestamp(self.data_time)

    @property
    def stored_datetime(self) -> Optional[datetime]:
        return parse_timestamp(self.timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "timestamp": self.timestamp,
            "dataPoints": self.data_points,
            "runName": self.run_name,
            "dataTime": self.data_time,
            "hoursBack": self.hours_back,
            "forecastOffset": self.forecast_offset,
            "runAge": self.run_age,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IndexEntry":
        return cls(
            index=int(data["index"]),
            timestamp=data.get("timestamp") or "",
            data_points=int(data.get("dataPoints") or 0),
            run_name=data.get("runName"),
            data_time=data.get("dataTime"),
            hours_back=data.get("hoursBack"),
            forecast_offset=data.get("forecastOffset"),
            run_age=data.get("runAge"),
        )


def _sort_time(entry: IndexEntry) -> float:
    dt = entry.data_datetime
    return dt.timestamp() if dt is not None else 0.0


# =============================================================================
# Store
# =============================================================================

class CacheStore:
    """
    Forecast cache over an async Redis connection.

    The connection must be created with ``decode_responses=True``.  Index
    read-modify-write sequences are serialised per base key with an
    ``asyncio.Lock``; single-key operations rely on Redis atomicity.
    """

    def __init__(
        self,
        client: aioredis.Redis,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_payload_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES,
        max_history: int = DEFAULT_MAX_HISTORY,
    ):
        self._client = client
        self.ttl_seconds = ttl_seconds
        self.max_payload_bytes = max_payload_bytes
        self.max_history = max_history
        self._index_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @classmethod
    def from_url(cls, redis_url: str, **kwargs) -> "CacheStore":
        client = aioredis.Redis.from_url(redis_url, decode_responses=True)
        return cls(client, **kwargs)

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except RedisError as e:
            logger.warning(f"Error closing Redis connection: {e}")

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    async def _get(self, key: str) -> Optional[str]:
        try:
            return await self._client.get(key)
        except RedisError as e:
            raise CacheBackendError(f"GET {key} failed: {e}") from e

    async def _set(self, key: str, value: str) -> None:
        try:
            await self._client.set(key, value, ex=self.ttl_seconds)
        except RedisError as e:
            raise CacheBackendError(f"SET {key} failed: {e}") from e

    async def _delete(self, *keys: str) -> None:
        if not keys:
            return
        try:
            await self._client.delete(*keys)
        except RedisError as e:
            raise CacheBackendError(f"DEL {', '.join(keys)} failed: {e}") from e

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            raise CacheBackendError(f"PING failed: {e}") from e

    async def ping_latency_ms(self) -> float:
        start = time.perf_counter()
        await self.ping()
        return (time.perf_counter() - start) * 1000

    @staticmethod
    async def _loads(key: str, raw: str) -> Any:
        try:
            return await asyncio.to_thread(_deserialize, raw)
        except ValueError as e:
            raise CacheBackendError(f"Corrupt JSON at key '{key}': {e}") from e

    async def _chunk_count(self, key: str) -> Optional[int]:
        raw = await self._get(f"{key}:chunks")
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError as e:
            raise CacheBackendError(f"Corrupt chunk count at key '{key}:chunks': {raw!r}") from e

    async def _clear_chunks(self, key: str) -> None:
        """Remove chunk keys left by an earlier chunked write of *key*."""
        count = await self._chunk_count(key)
        if count is None:
            return
        await self._delete(
            *[f"{key}:chunk:{i}" for i in range(count)],
            f"{key}:chunks",
            f"{key}:meta",
        )

    # ------------------------------------------------------------------
    # Chunked JSON values
    # ------------------------------------------------------------------

    async def set_value(self, key: str, value: ChunkableValue) -> None:
        """
        Store a JSON value, chunking it when it exceeds the payload ceiling.

        Raises:
            PayloadNotChunkable: An oversized :class:`OpaqueValue`.
            CacheBackendError: Redis failure.
        """
        serialized = await asyncio.to_thread(_serialize, value)
        size = len(serialized.encode("utf-8"))

        if size <= self.max_payload_bytes:
            await self._clear_chunks(key)
            await self._set(key, serialized)
            logger.info(f"Redis: Stored data at key '{key}' ({size} bytes) with TTL {self.ttl_seconds}s")
            return

        if isinstance(value, ListValue):
            items, meta = value.items, None
        elif isinstance(value, PointsObject):
            items, meta = value.points, value.meta
        else:
            raise PayloadNotChunkable(key, size)

        if not items:
            raise PayloadNotChunkable(key, size)

        num_chunks = math.ceil(size / self.max_payload_bytes)
        chunk_size = math.ceil(len(items) / num_chunks)
        chunks = [items[i:i + chunk_size] for i in range(0, len(items), chunk_size)]
        logger.info(
            f"Redis: Value at '{key}' too large ({size} bytes), "
            f"splitting {len(items)} items into {len(chunks)} chunks"
        )

        await self._clear_chunks(key)
        await self._delete(key)
        if meta is not None:
            await self._set(f"{key}:meta", json.dumps(meta))
        await self._set(f"{key}:chunks", str(len(chunks)))
        for i, encoded in enumerate(await asyncio.to_thread(_serialize_chunks, chunks)):
            await self._set(f"{key}:chunk:{i}", encoded)

        logger.info(f"Redis: Stored {len(items)} items in {len(chunks)} chunks at key '{key}'")

    async def get_value(self, key: str) -> Optional[Any]:
        """Read a value written by :meth:`set_value`, reassembling chunks."""
        count = await self._chunk_count(key)
        if count is None:
            raw = await self._get(key)
            if raw is None:
                logger.debug(f"Redis: No data found at key '{key}'")
                return None
            return await self._loads(key, raw)

        items: List[Any] = []
        for i in range(count):
            chunk_key = f"{key}:chunk:{i}"
            raw = await self._get(chunk_key)
            if raw is not None:
                items.extend(await self._loads(chunk_key, raw))

        raw_meta = await self._get(f"{key}:meta")
        logger.info(f"Redis: Retrieved {count} chunks ({len(items)} items) from key '{key}'")
        if raw_meta is None:
            return items
        meta = await self._loads(f"{key}:meta", raw_meta)
        meta[POINTS_FIELD] = items
        return meta

    async def delete_value(self, key: str) -> None:
        """Delete a value, including any chunks."""
        count = await self._chunk_count(key)
        if count is None:
            await self._delete(key)
        else:
            await self._delete(
                *[f"{key}:chunk:{i}" for i in range(count)],
                f"{key}:chunks",
                f"{key}:meta",
            )

    # ------------------------------------------------------------------
    # Binary values
    # ------------------------------------------------------------------

    async def set_binary(self, key: str, data: bytes) -> None:
        await self._set(key, base64.b64encode(data).decode("ascii"))
        logger.info(f"Redis: Stored binary data at key '{key}' ({len(data)} bytes)")

    async def get_binary(self, key: str) -> Optional[bytes]:
        raw = await self._get(key)
        if raw is None:
            return None
        try:
            return base64.b64decode(raw, validate=True)
        except (binascii.Error, ValueError) as e:
            raise CacheBackendError(f"Corrupt base64 at key '{key}': {e}") from e

    async def set_binary_indexed(self, base_key: str, index: int, data: bytes) -> None:
        await self.set_binary(f"{base_key}:{index}", data)
        await self.set_binary(base_key, data)

    async def get_binary_by_index(self, base_key: str, index: int) -> Optional[bytes]:
        return await self.get_binary(f"{base_key}:{index}")

    # ------------------------------------------------------------------
    # Indexed history
    # ------------------------------------------------------------------

    async def _read_indices(self, base_key: str) -> List[IndexEntry]:
        raw = await self._get(f"{base_key}:indices")
        if raw is None:
            return []
        try:
            return [IndexEntry.from_dict(item) for item in json.loads(raw)]
        except (ValueError, TypeError, KeyError) as e:
            logger.warning(f"Redis: Ignoring unreadable index list at '{base_key}:indices': {e}")
            return []

    async def _write_indices(self, base_key: str, entries: List[IndexEntry]) -> None:
        await self._set(f"{base_key}:indices", json.dumps([e.to_dict() for e in entries]))

    async def _read_current_index(self, base_key: str) -> int:
        raw = await self._get(f"{base_key}:current_index")
        try:
            return int(raw) if raw is not None else 0
        except ValueError:
            return 0

    async def _delete_entry_data(
        self, base_key: str, index: int, companion_keys: Sequence[str]
    ) -> None:
        await self.delete_value(f"{base_key}:{index}")
        await self._delete(*[f"{companion}:{index}" for companion in companion_keys])

    async def set_indexed(
        self,
        value: ChunkableValue,
        base_key: str,
        max_history: Optional[int] = None,
        companion_keys: Sequence[str] = (),
    ) -> int:
        """
        Store *value* as a new (or refreshed) history version.

        Args:
            value: The snapshot; ``dataTime``, ``runName``, ``hoursBack``,
                ``forecastOffset`` and ``runAge`` are read from its fields.
            base_key: e.g. ``wind:points``.
            max_history: History depth (defaults to the store's setting).
            companion_keys: Base keys whose ``{key}:{index}`` entries are
                deleted together with an evicted version.

        Returns:
            The index the value was written under.
        """
        max_history = self.max_history if max_history is None else max_history
        fields = _descriptor(value)
        data_time = fields.get("dataTime")
        data_dt = parse_timestamp(data_time)

        async with self._index_locks[base_key]:
            current_index = await self._read_current_index(base_key)
            entries = await self._read_indices(base_key)

            position = next(
                (i for i, e in enumerate(entries) if within_tolerance(e.data_datetime, data_dt)),
                None,
            )
            index = entries[position].index if position is not None else current_index

            entry = IndexEntry(
                index=index,
                timestamp=datetime.now(timezone.utc).isoformat(),
                data_points=_count_points(value),
                run_name=fields.get("runName"),
                data_time=data_time,
                hours_back=fields.get("hoursBack"),
                forecast_offset=fields.get("forecastOffset"),
                run_age=fields.get("runAge"),
            )
            if position is not None:
                logger.info(f"Redis: Updating existing entry at index {index} for {data_time}")
                entries[position] = entry
            else:
                entries.append(entry)

            await self.set_value(f"{base_key}:{index}", value)

            if len(entries) > max_history:
                evicted = entries[:len(entries) - max_history]
                entries = entries[len(entries) - max_history:]
                for old in evicted:
                    await self._delete_entry_data(base_key, old.index, companion_keys)
                    logger.info(f"Redis: Evicted '{base_key}' index {old.index}")

            await self._write_indices(base_key, entries)
            if position is None:
                await self._set(f"{base_key}:current_index", str(index + 1))

            await self.set_value(base_key, value)

        logger.info(f"Redis: Stored '{base_key}' at index {index}, total history: {len(entries)}")
        return index

    async def get_value_by_index(self, base_key: str, index: int) -> Optional[Any]:
        return await self.get_value(f"{base_key}:{index}")

    async def list_indices(self, base_key: str) -> List[IndexEntry]:
        """History entries, most recent ``dataTime`` first."""
        entries = await self._read_indices(base_key)
        return sorted(entries, key=_sort_time, reverse=True)

    async def remove_duplicate_entries(
        self, base_key: str, companion_keys: Sequence[str] = ()
    ) -> List[IndexEntry]:
        """
        Collapse history entries whose data times lie within 2 h of each other.

        The entry with the newest storage timestamp survives; the others'
        data is deleted and the index list rewritten.

        Returns:
            The removed entries.
        """
        async with self._index_locks[base_key]:
            entries = await self._read_indices(base_key)
            if not entries:
                logger.info(f"No indices found for {base_key}")
                return []

            unique: List[IndexEntry] = []
            removed: List[IndexEntry] = []
            for entry in entries:
                match = next(
                    (i for i, kept in enumerate(unique)
                     if within_tolerance(kept.data_datetime, entry.data_datetime)),
                    None,
                )
                if match is None:
                    unique.append(entry)
                    continue

                existing = unique[match]
                existing_ts = _stored_time(existing)
                if _stored_time(entry) > existing_ts:
                    removed.append(existing)
                    unique[match] = entry
                else:
                    removed.append(entry)

            for dup in removed:
                await self._delete_entry_data(base_key, dup.index, companion_keys)
                logger.info(f"Deleted duplicate {dup.data_time} at index {dup.index}")

            await self._write_indices(base_key, unique)

        logger.info(
            f"Cleanup complete for {base_key}: {len(entries)} -> {len(unique)} entries "
            f"({len(removed)} removed)"
        )
        return removed


def _stored_time(entry: IndexEntry) -> float:
    dt = entry.stored_datetime
    return dt.timestamp() if dt is not None else 0.0
