"""Fill the visitor store with made-up visitors for development dashboards."""
from __future__ import annotations

import ipaddress
import random
from typing import List, Optional

from geoloc.models import VisitorRecord
from geoloc.storage.ledger import VisitorLocationStore

DEMO_COUNTRIES = ["US", "CA", "GB", "DE", "FR", "BR", "IN", "JP", "AU", "ZA"]


def random_public_ip(rng: random.Random) -> str:
    while True:
        candidate = ipaddress.IPv4Address(rng.getrandbits(32))
        if candidate.is_global:
            return str(candidate)


def demo_visitor(rng: random.Random) -> VisitorRecord:
    return VisitorRecord(
        ip=random_public_ip(rng),
        latitude=f"{rng.uniform(-60.0, 70.0):.4f}",
        longitude=f"{rng.uniform(-180.0, 180.0):.4f}",
        country_code=rng.choice(DEMO_COUNTRIES),
    )


async def seed_visitors(
    store: VisitorLocationStore,
    count: int,
    *,
    rng: Optional[random.Random] = None,
) -> List[VisitorRecord]:
    """Add ``count`` random visitors, most recent last; returns the generated records."""
    rng = rng or random.Random()
    records = [demo_visitor(rng) for _ in range(count)]
    for record in records:
        await store.add(record.ip, record)
    return records
