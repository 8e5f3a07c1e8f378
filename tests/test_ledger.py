import asyncio
from datetime import datetime, timezone

from geoloc.models import VisitorRecord
from geoloc.storage.backends import FileBackend, MemoryBackend
from geoloc.storage.ledger import RobotLedger, VisitorLocationStore


class CountingBackend(MemoryBackend):
    def __init__(self, *, fail_loads: bool = False):
        super().__init__()
        self.writes = 0
        self.fail_loads = fail_loads

    async def load(self, key):
        if self.fail_loads:
            return None
        return await super().load(key)

    async def store(self, key, payload, ttl=None):
        self.writes += 1
        return await super().store(key, payload, ttl)


def _record(ip: str, latitude: str = "29.7589") -> VisitorRecord:
    return VisitorRecord(ip=ip, latitude=latitude, longitude="-95.3677", country_code="US")


def test_readd_preserves_existing_record_and_moves_to_front():
    async def _run():
        store = VisitorLocationStore(MemoryBackend())
        await store.add("198.51.100.1", _record("198.51.100.1", latitude="10.0"))
        await store.add("198.51.100.2", _record("198.51.100.2"))
        await store.add("198.51.100.1", _record("198.51.100.1", latitude="99.0"))
        entries = await store.snapshot()
        assert [ip for ip, _ in entries] == ["198.51.100.1", "198.51.100.2"]
        assert entries[0][1].latitude == "10.0"

    asyncio.run(_run())


def test_cap_evicts_least_recently_touched():
    async def _run():
        store = VisitorLocationStore(MemoryBackend(), max_entries=3)
        for octet in (1, 2, 3):
            await store.add(f"198.51.100.{octet}", _record(f"198.51.100.{octet}"))
        # touching .1 makes .2 the oldest
        await store.add("198.51.100.1", _record("198.51.100.1"))
        await store.add("198.51.100.4", _record("198.51.100.4"))
        entries = await store.snapshot()
        assert len(entries) == 3
        assert [ip for ip, _ in entries] == ["198.51.100.4", "198.51.100.1", "198.51.100.3"]
        assert await store.get("198.51.100.2") is None

    asyncio.run(_run())


def test_remove_absent_ip_is_a_successful_noop():
    async def _run():
        backend = CountingBackend()
        store = VisitorLocationStore(backend)
        await store.add("198.51.100.1", _record("198.51.100.1"))
        writes = backend.writes
        assert await store.remove("203.0.113.9") is True
        assert backend.writes == writes
        assert [ip for ip, _ in await store.snapshot()] == ["198.51.100.1"]
        assert await store.remove("198.51.100.1") is True
        assert await store.snapshot() == []
        assert backend.writes == writes + 1

    asyncio.run(_run())


def test_every_mutation_writes_once():
    async def _run():
        backend = CountingBackend()
        store = VisitorLocationStore(backend)
        await store.add("198.51.100.1", _record("198.51.100.1"))
        await store.add("198.51.100.2", _record("198.51.100.2"))
        await store.add("198.51.100.1", _record("198.51.100.1"))
        assert backend.writes == 3

    asyncio.run(_run())


def test_snapshot_limit_returns_most_recent():
    async def _run():
        store = VisitorLocationStore(MemoryBackend())
        for octet in range(1, 6):
            await store.add(f"198.51.100.{octet}", _record(f"198.51.100.{octet}"))
        recent = await store.snapshot(limit=2)
        assert [ip for ip, _ in recent] == ["198.51.100.5", "198.51.100.4"]
        assert len(await store.snapshot()) == 5

    asyncio.run(_run())


def test_zero_cap_disables_the_store():
    async def _run():
        backend = CountingBackend()
        store = VisitorLocationStore(backend, max_entries=0)
        assert store.enabled is False
        assert await store.add("198.51.100.1", _record("198.51.100.1")) is False
        assert await store.get("198.51.100.1") is None
        assert await store.snapshot() == []
        assert backend.writes == 0

    asyncio.run(_run())


def test_store_survives_restart_through_file_backend(tmp_path):
    async def _run():
        first = VisitorLocationStore(FileBackend(tmp_path))
        await first.add("198.51.100.1", _record("198.51.100.1"))
        await first.add("198.51.100.2", _record("198.51.100.2"))

        second = VisitorLocationStore(FileBackend(tmp_path))
        await second.ensure_loaded()
        assert [ip for ip, _ in await second.snapshot()] == ["198.51.100.2", "198.51.100.1"]
        record = await second.get("198.51.100.1")
        assert record is not None and record.latitude == "29.7589"

    asyncio.run(_run())


def test_failed_backend_read_keeps_in_memory_snapshot():
    async def _run():
        backend = CountingBackend()
        store = VisitorLocationStore(backend)
        await store.add("198.51.100.1", _record("198.51.100.1"))
        backend.fail_loads = True
        await store.add("198.51.100.2", _record("198.51.100.2"))
        assert [ip for ip, _ in await store.snapshot()] == ["198.51.100.2", "198.51.100.1"]

    asyncio.run(_run())


def test_mutations_on_a_never_loaded_ledger_with_unreadable_store():
    async def _run():
        backend = CountingBackend(fail_loads=True)
        store = VisitorLocationStore(backend)
        assert await store.remove("198.51.100.9") is True
        assert backend.writes == 0
        assert await store.add("198.51.100.9", _record("198.51.100.9")) is True
        assert await store.remove("198.51.100.9") is True
        assert await store.snapshot() == []
        assert backend.writes == 2

    asyncio.run(_run())


def test_concurrent_adds_respect_cap_and_uniqueness():
    async def _run():
        store = VisitorLocationStore(MemoryBackend(), max_entries=5)
        ips = [f"198.51.100.{octet % 8}" for octet in range(40)]
        await asyncio.gather(*(store.add(ip, _record(ip)) for ip in ips))
        entries = await store.snapshot()
        assert len(entries) == 5
        assert len({ip for ip, _ in entries}) == 5

    asyncio.run(_run())


def test_robot_ledger_upsert_replaces_value():
    async def _run():
        backend = MemoryBackend()
        ledger = RobotLedger(backend, max_entries=2)
        first_seen = datetime(2024, 1, 1, tzinfo=timezone.utc)
        await ledger.record("192.0.2.1", "Googlebot/2.1", seen_at=first_seen)
        await ledger.record("192.0.2.2", "bingbot/2.0")
        await ledger.record("192.0.2.1", "Googlebot/2.2")
        entries = await ledger.snapshot()
        assert [ip for ip, _ in entries] == ["192.0.2.1", "192.0.2.2"]
        assert entries[0][1].user_agent == "Googlebot/2.2"
        assert entries[0][1].last_seen > first_seen
        await ledger.record("192.0.2.3", "Slurp")
        assert not await ledger.contains("192.0.2.2")

        # independent key from the visitor store on the same backend
        visitors = VisitorLocationStore(backend)
        assert await visitors.snapshot() == []

    asyncio.run(_run())
