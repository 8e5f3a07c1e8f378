"""Bounded, recency-ordered ledgers persisted through a backing store.

Both ledgers keep an ordered mapping keyed by IP with the most recently
touched entry first. Every mutation reloads the backing store, applies the
change, truncates to the cap from the tail and writes the whole mapping back
once. Mutations are serialized per ledger so the cap and the key uniqueness
hold when several requests touch the same ledger.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from itertools import islice
from typing import Dict, Generic, List, Optional, Tuple, Type, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from geoloc.models import RobotEntry, VisitorRecord
from geoloc.storage.backends import CoordinateStore

LOGGER = structlog.get_logger(__name__)

DEFAULT_MAX_ENTRIES = 1000
DEFAULT_TTL_SECONDS = 3600

RecordT = TypeVar("RecordT", bound=BaseModel)


class RecencyLedger(Generic[RecordT]):
    """Capped IP-keyed mapping, most recent first, evicting from the tail."""

    key: str = ""
    model: Type[RecordT]
    preserve_existing: bool = False

    def __init__(
        self,
        backend: CoordinateStore,
        *,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        ttl: Optional[int] = DEFAULT_TTL_SECONDS,
    ) -> None:
        self._backend = backend
        self._max_entries = max_entries
        self._ttl = ttl
        self._entries: Optional[Dict[str, RecordT]] = None
        self._lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        """A cap of zero switches the ledger off entirely."""
        return self._max_entries > 0

    async def ensure_loaded(self) -> None:
        """Read the backing store once; later reads use the in-memory snapshot."""
        if not self.enabled or self._entries is not None:
            return
        async with self._lock:
            if self._entries is None:
                await self._reload()

    async def get(self, ip: str) -> Optional[RecordT]:
        await self.ensure_loaded()
        if not self._entries:
            return None
        return self._entries.get(ip)

    async def contains(self, ip: str) -> bool:
        return await self.get(ip) is not None

    async def remove(self, ip: str) -> bool:
        """Drop ``ip`` if present; an absent key is a successful no-op."""
        if not self.enabled:
            return True
        async with self._lock:
            current = await self._reload()
            if ip not in current:
                return True
            entries = dict(current)
            del entries[ip]
            self._entries = entries
            return await self._persist(entries)

    async def snapshot(self, limit: int = 0) -> List[Tuple[str, RecordT]]:
        """Return up to ``limit`` most recent entries, or all of them when 0."""
        await self.ensure_loaded()
        if not self._entries:
            return []
        items = self._entries.items()
        if limit:
            return list(islice(items, limit))
        return list(items)

    async def _upsert(self, ip: str, record: RecordT) -> bool:
        if not self.enabled:
            return False
        async with self._lock:
            current = await self._reload()
            existing = current.get(ip)
            if existing is not None and self.preserve_existing:
                record = existing
            entries: Dict[str, RecordT] = {ip: record}
            for key, value in current.items():
                if len(entries) >= self._max_entries:
                    break
                if key != ip:
                    entries[key] = value
            self._entries = entries
            return await self._persist(entries)

    async def _reload(self) -> Dict[str, RecordT]:
        """Refresh the snapshot from the store; an unreadable store keeps the current one."""
        payload = await self._backend.load(self.key)
        if payload is None:
            if self._entries is None:
                self._entries = {}
            return self._entries
        entries: Dict[str, RecordT] = {}
        for ip, raw in islice(payload.items(), self._max_entries):
            try:
                entries[ip] = self.model.model_validate(raw)
            except ValidationError:
                LOGGER.warning("ledger_entry_invalid", ledger=self.key, ip=ip)
        self._entries = entries
        return entries

    async def _persist(self, entries: Dict[str, RecordT]) -> bool:
        payload = {ip: record.model_dump(mode="json") for ip, record in entries.items()}
        stored = await self._backend.store(self.key, payload, self._ttl)
        if not stored:
            LOGGER.warning("ledger_persist_failed", ledger=self.key, entries=len(payload))
        return stored


class VisitorLocationStore(RecencyLedger[VisitorRecord]):
    """Recently resolved anonymous visitors.

    Re-adding a known IP only moves it to the front: the stored coordinates
    are kept, so a later and possibly worse resolution never replaces one
    that was already trusted.
    """

    key = "VisitorLocationLog"
    model = VisitorRecord
    preserve_existing = True

    async def add(self, ip: str, record: VisitorRecord) -> bool:
        return await self._upsert(ip, record)


class RobotLedger(RecencyLedger[RobotEntry]):
    """IPs previously classified as robots, with their last user agent."""

    key = "RobotLog"
    model = RobotEntry

    async def record(self, ip: str, user_agent: str, seen_at: Optional[datetime] = None) -> bool:
        entry = RobotEntry(user_agent=user_agent, last_seen=seen_at or datetime.now(timezone.utc))
        return await self._upsert(ip, entry)
