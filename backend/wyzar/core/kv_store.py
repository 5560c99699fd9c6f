"""Keyed state store for lockout and passcode records.

Two backends behind one small async interface:
- MemoryKeyValueStore: single-process dict guarded by a lock
- RedisKeyValueStore: shared store for multi-instance deployments

Values are JSON strings. All read-modify-write updates go through
compare_and_swap so concurrent requests for the same key never lose an
update; atomic_update() wraps the retry loop.
"""

import json
import logging
import threading
import time
from collections.abc import Callable
from typing import Any, Protocol, TypeVar

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Bounded retries for a contended key before giving up
DEFAULT_MAX_RETRIES = 10

JsonRecord = dict[str, Any]


class KeyValueStoreConflictError(Exception):
    """Compare-and-swap kept losing races for one key."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Too many concurrent updates for key '{key}'")


class KeyValueStore(Protocol):
    """Async key-value store with compare-and-swap."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def compare_and_swap(
        self,
        key: str,
        expected: str | None,
        new: str | None,
        ttl_seconds: int | None = None,
    ) -> bool:
        """Write ``new`` only if the current value equals ``expected``.

        ``expected=None`` means "key must be absent"; ``new=None`` deletes.

        Returns:
            True if the write happened, False if the value had changed.
        """
        ...

    async def keys(self, prefix: str) -> list[str]: ...

    async def close(self) -> None: ...


class MemoryKeyValueStore:
    """In-process store.

    Every operation holds a threading.Lock, so the store is safe under the
    event loop and from worker threads alike. Not shared across processes.
    """

    def __init__(self, monotonic: Callable[[], float] = time.monotonic) -> None:
        self._data: dict[str, tuple[str, float | None]] = {}
        self._lock = threading.Lock()
        self._monotonic = monotonic

    def _read(self, key: str) -> str | None:
        # Caller holds the lock
        entry = self._data.get(key)
        if entry is None:
            return None
        value, deadline = entry
        if deadline is not None and self._monotonic() >= deadline:
            del self._data[key]
            return None
        return value

    def _write(self, key: str, value: str | None, ttl_seconds: int | None) -> None:
        # Caller holds the lock
        if value is None:
            self._data.pop(key, None)
            return
        deadline = self._monotonic() + ttl_seconds if ttl_seconds else None
        self._data[key] = (value, deadline)

    async def get(self, key: str) -> str | None:
        with self._lock:
            return self._read(key)

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        with self._lock:
            self._write(key, value, ttl_seconds)

    async def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    async def compare_and_swap(
        self,
        key: str,
        expected: str | None,
        new: str | None,
        ttl_seconds: int | None = None,
    ) -> bool:
        with self._lock:
            if self._read(key) != expected:
                return False
            self._write(key, new, ttl_seconds)
            return True

    async def keys(self, prefix: str) -> list[str]:
        with self._lock:
            return [
                k
                for k in list(self._data)
                if k.startswith(prefix) and self._read(k) is not None
            ]

    async def close(self) -> None:
        with self._lock:
            self._data.clear()


class RedisKeyValueStore:
    """Redis-backed store (redis.asyncio).

    compare_and_swap runs as a server-side Lua script, so the comparison
    and the write are a single atomic step.
    """

    _CAS_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if ARGV[1] == '1' then
  if current ~= ARGV[2] then return 0 end
else
  if current then return 0 end
end
if ARGV[3] == '1' then
  local ttl = tonumber(ARGV[5])
  if ttl > 0 then
    redis.call('SET', KEYS[1], ARGV[4], 'EX', ttl)
  else
    redis.call('SET', KEYS[1], ARGV[4])
  end
else
  redis.call('DEL', KEYS[1])
end
return 1
"""

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0) -> None:
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._cas = self.client.register_script(self._CAS_SCRIPT)

    async def get(self, key: str) -> str | None:
        return await self.client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        await self.client.set(key, value, ex=ttl_seconds or None)

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    async def compare_and_swap(
        self,
        key: str,
        expected: str | None,
        new: str | None,
        ttl_seconds: int | None = None,
    ) -> bool:
        result = await self._cas(
            keys=[key],
            args=[
                "0" if expected is None else "1",
                expected or "",
                "0" if new is None else "1",
                new or "",
                ttl_seconds or 0,
            ],
        )
        return bool(result)

    async def keys(self, prefix: str) -> list[str]:
        return [key async for key in self.client.scan_iter(match=f"{prefix}*")]

    async def close(self) -> None:
        await self.client.aclose()


def build_kv_store(url: str, *, timeout_seconds: float = 5.0) -> KeyValueStore:
    """Create the store named by a URL.

    Args:
        url: "memory://" or a redis:// / rediss:// URL.
        timeout_seconds: Socket timeout for network backends.

    Raises:
        ValueError: If the scheme is not supported.
    """
    if url.startswith("memory://"):
        return MemoryKeyValueStore()
    if url.startswith(("redis://", "rediss://", "unix://")):
        return RedisKeyValueStore(url, socket_timeout=timeout_seconds)
    msg = f"Unsupported key-value store URL scheme: {url.split(':', 1)[0]}"
    raise ValueError(msg)


def encode_record(record: JsonRecord) -> str:
    """Canonical JSON encoding (sorted keys) so unchanged records compare equal."""
    return json.dumps(record, sort_keys=True)


def decode_record(raw: str | None) -> JsonRecord | None:
    """Decode a stored record; None stays None."""
    return json.loads(raw) if raw is not None else None


async def atomic_update(
    store: KeyValueStore,
    key: str,
    mutate: Callable[[JsonRecord | None], tuple[JsonRecord | None, T]],
    *,
    ttl_seconds: int | None = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> T:
    """Apply ``mutate`` to a JSON record under compare-and-swap.

    ``mutate`` receives a freshly decoded record (or None) on every attempt
    and returns ``(new_record_or_None, result)``. It may run more than once,
    so it must not have side effects.

    Returns:
        The ``result`` from the attempt whose write won.

    Raises:
        KeyValueStoreConflictError: After ``max_retries`` lost races.
    """
    for _ in range(max_retries):
        raw = await store.get(key)
        current = decode_record(raw)
        new_record, result = mutate(current)
        new_raw = None if new_record is None else encode_record(new_record)
        if new_raw == raw:
            return result
        if await store.compare_and_swap(key, raw, new_raw, ttl_seconds):
            return result

    logger.warning("Compare-and-swap retries exhausted", extra={"key": key})
    raise KeyValueStoreConflictError(key)


async def read_record(store: KeyValueStore, key: str) -> JsonRecord | None:
    """Read and decode a JSON record, None if absent."""
    return decode_record(await store.get(key))
