"""Per-request bookkeeping of member and anonymous visitor locations."""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, MutableMapping, Optional

import structlog

from geoloc.models import LocationDescriptor, ResolvedLocation, UserProfile, VisitorRecord
from geoloc.observability.metrics import MetricsRegistry
from geoloc.observability.tracing import bind_request, clear_request
from geoloc.resolver import LocationResolver
from geoloc.storage.ledger import VisitorLocationStore
from geoloc.traffic import RequestContext, TrafficClassifier

LOGGER = structlog.get_logger(__name__)

SESSION_MANAGED_FLAG = "location_managed"


def _nonzero(value: Optional[str]) -> bool:
    if not value:
        return False
    try:
        return Decimal(value) != 0
    except InvalidOperation:
        return False


class LocationManager:
    """Decides, once per request, whether and how a location lookup happens.

    Members get their stored coordinates refreshed unless they typed in a
    location and already have coordinates; anonymous visitors are resolved by
    IP once per session and remembered in the visitor store.
    """

    def __init__(
        self,
        *,
        resolver: LocationResolver,
        visitors: VisitorLocationStore,
        classifier: TrafficClassifier,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        self._resolver = resolver
        self._visitors = visitors
        self._classifier = classifier
        self._metrics = metrics or MetricsRegistry()

    async def manage_current_locations(
        self,
        request: RequestContext,
        session: MutableMapping[str, Any],
        user: Optional[UserProfile] = None,
    ) -> bool:
        """Return True when a member's coordinates were updated or a visitor was logged."""
        bind_request(remote_addr=request.remote_addr, path=request.path)
        try:
            if user is not None:
                return await self._manage_member(request, session, user)
            return await self._manage_visitor(request, session)
        finally:
            clear_request()

    async def _manage_member(
        self,
        request: RequestContext,
        session: MutableMapping[str, Any],
        user: UserProfile,
    ) -> bool:
        if request.remote_addr:
            await self._visitors.remove(request.remote_addr)

        # typed-in location plus coordinates is already the best we can get
        if (user.zipcode or user.location) and _nonzero(user.latitude) and _nonzero(user.longitude):
            return False

        descriptor = LocationDescriptor(
            city=user.location,
            zipcode=user.zipcode,
            country_code=user.country_code,
            country_iso3=user.country_iso3,
            ip=request.remote_addr,
        )
        outcome = await self._resolver.resolve(descriptor, request=request, session=session, return_simple=True)
        if not isinstance(outcome, ResolvedLocation):
            LOGGER.info("member_location_unresolved", outcome=outcome.kind)
            return False
        user.latitude = outcome.latitude
        user.longitude = outcome.longitude
        LOGGER.info("member_location_updated", source=outcome.source.name)
        return True

    async def _manage_visitor(self, request: RequestContext, session: MutableMapping[str, Any]) -> bool:
        if not self._visitors.enabled or not request.remote_addr:
            return False
        if await self._classifier.is_robot(request) or self._classifier.is_server(request):
            return False
        if session.get(SESSION_MANAGED_FLAG):
            return False
        session[SESSION_MANAGED_FLAG] = True

        outcome = await self._resolver.resolve(request.remote_addr, request=request, session=session)
        if not isinstance(outcome, ResolvedLocation) or not outcome.latitude:
            return False
        record = VisitorRecord(
            ip=request.remote_addr,
            latitude=outcome.latitude,
            longitude=outcome.longitude,
            country_code=outcome.country_code or "",
        )
        await self._visitors.add(request.remote_addr, record)
        self._metrics.incr("visitors_logged")
        return True
