"""Interchangeable key-value backends holding serialized ledgers."""
from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Tuple

import orjson
import structlog
from redis import RedisError
from redis.asyncio import Redis

LOGGER = structlog.get_logger(__name__)

_FILE_SCHEMA_VERSION = 1

Payload = Dict[str, Any]


class CoordinateStore(Protocol):
    """Minimal contract the ledgers need from a backing store."""

    async def load(self, key: str) -> Optional[Payload]:
        ...

    async def store(self, key: str, payload: Payload, ttl: Optional[int] = None) -> bool:
        ...


class MemoryBackend:
    """Process-local store; values are kept serialized so callers never share references."""

    def __init__(self) -> None:
        self._items: Dict[str, Tuple[Optional[float], bytes]] = {}

    async def load(self, key: str) -> Optional[Payload]:
        entry = self._items.get(key)
        if entry is None:
            return None
        expires_at, blob = entry
        if expires_at is not None and expires_at <= time.monotonic():
            del self._items[key]
            return None
        return orjson.loads(blob)

    async def store(self, key: str, payload: Payload, ttl: Optional[int] = None) -> bool:
        expires_at = time.monotonic() + ttl if ttl else None
        self._items[key] = (expires_at, orjson.dumps(payload))
        return True


class FileBackend:
    """One JSON file per key under a directory; TTLs are ignored."""

    def __init__(self, root: Path) -> None:
        self._root = root

    def path_for(self, key: str) -> Path:
        return self._root / f"{key}.json"

    async def load(self, key: str) -> Optional[Payload]:
        return await asyncio.to_thread(self._read_payload, self.path_for(key))

    async def store(self, key: str, payload: Payload, ttl: Optional[int] = None) -> bool:
        return await asyncio.to_thread(self._write_payload, self.path_for(key), payload)

    def _read_payload(self, path: Path) -> Optional[Payload]:
        if not path.exists():
            return None
        try:
            blob = orjson.loads(path.read_bytes())
        except (OSError, orjson.JSONDecodeError) as exc:
            LOGGER.warning("store_read_failed", path=str(path), error=str(exc))
            return None
        if not isinstance(blob, dict) or blob.get("version") != _FILE_SCHEMA_VERSION:
            return None
        data = blob.get("data")
        return data if isinstance(data, dict) else None

    def _write_payload(self, path: Path, payload: Payload) -> bool:
        blob = {"version": _FILE_SCHEMA_VERSION, "data": payload}
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(orjson.dumps(blob))
        except OSError as exc:
            LOGGER.warning("store_write_failed", path=str(path), error=str(exc))
            return False
        return True


class RedisBackend:
    """Shared cache backend; every write refreshes the key's expiry."""

    def __init__(self, client: Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisBackend":
        return cls(Redis.from_url(url))

    async def load(self, key: str) -> Optional[Payload]:
        try:
            blob = await self._client.get(key)
        except RedisError as exc:
            LOGGER.warning("store_read_failed", key=key, error=str(exc))
            return None
        if blob is None:
            return None
        try:
            data = orjson.loads(blob)
        except orjson.JSONDecodeError:
            LOGGER.warning("store_payload_corrupt", key=key)
            return None
        return data if isinstance(data, dict) else None

    async def store(self, key: str, payload: Payload, ttl: Optional[int] = None) -> bool:
        try:
            await self._client.set(key, orjson.dumps(payload), ex=ttl)
        except RedisError as exc:
            LOGGER.warning("store_write_failed", key=key, error=str(exc))
            return False
        return True

    async def close(self) -> None:
        await self._client.aclose()
