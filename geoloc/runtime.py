"""Wires settings into one set of collaborators shared by all requests of a process."""
from __future__ import annotations

import contextlib
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import httpx

from geoloc.config import Settings, build_backend
from geoloc.geocode.audit import AuditLog
from geoloc.geocode.ip import HttpIpGeolocator
from geoloc.geocode.text import HttpTextGeocoder
from geoloc.observability.metrics import MetricsRegistry
from geoloc.orchestration import LocationManager
from geoloc.resolver import LocationResolver
from geoloc.storage.backends import CoordinateStore, RedisBackend
from geoloc.storage.ledger import RobotLedger, VisitorLocationStore
from geoloc.traffic import TrafficClassifier


@dataclass
class Runtime:
    """Everything a request handler needs to resolve and record locations."""

    settings: Settings
    metrics: MetricsRegistry
    visitors: VisitorLocationStore
    robots: RobotLedger
    classifier: TrafficClassifier
    resolver: LocationResolver
    manager: LocationManager


@contextlib.asynccontextmanager
async def open_runtime(
    settings: Settings,
    *,
    backend: Optional[CoordinateStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AsyncIterator[Runtime]:
    """Yield a configured `Runtime` for the duration of the context."""
    store = backend or build_backend(settings.visitors)
    cap = settings.visitors.max_visitor_count
    ttl = settings.visitors.ttl_seconds
    metrics = MetricsRegistry()
    visitors = VisitorLocationStore(store, max_entries=cap, ttl=ttl)
    robots = RobotLedger(store, max_entries=cap, ttl=ttl)
    classifier = TrafficClassifier(robots, development=settings.app.development, metrics=metrics)
    try:
        async with httpx.AsyncClient(transport=transport) as client:
            resolver = LocationResolver(
                geocoder=HttpTextGeocoder(
                    client=client,
                    base_url=settings.geocoder.base_url,
                    api_key=settings.geocoder.api_key,
                    timeout=settings.geocoder.timeout_seconds,
                ),
                ip_geolocator=HttpIpGeolocator(
                    client=client,
                    base_url=settings.ip_geolocation.base_url,
                    license_key=settings.ip_geolocation.license_key,
                    timeout=settings.ip_geolocation.timeout_seconds,
                ),
                visitors=visitors,
                classifier=classifier,
                audit=AuditLog(settings.app.audit_log),
                metrics=metrics,
            )
            manager = LocationManager(resolver=resolver, visitors=visitors, classifier=classifier, metrics=metrics)
            await visitors.ensure_loaded()
            yield Runtime(
                settings=settings,
                metrics=metrics,
                visitors=visitors,
                robots=robots,
                classifier=classifier,
                resolver=resolver,
                manager=manager,
            )
    finally:
        if isinstance(store, RedisBackend):
            await store.close()
