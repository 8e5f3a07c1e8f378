"""Coordinate resolution waterfall: text geocoding first, IP geolocation as fallback."""
from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, MutableMapping, Optional, Tuple, Union

import orjson
import structlog

from geoloc.accuracy import AccuracySource
from geoloc.errors import CollaboratorError, GeolocError
from geoloc.geocode.audit import AuditLog
from geoloc.geocode.ip import IpGeolocator
from geoloc.geocode.text import TextGeocoder
from geoloc.models import (
    IpGeolocation,
    LocationDescriptor,
    NotFound,
    RateLimited,
    ResolvedLocation,
    ResolveOutcome,
)
from geoloc.observability.metrics import MetricsRegistry
from geoloc.observability.tracing import log_geocode_result, log_ip_lookup
from geoloc.storage.ledger import VisitorLocationStore
from geoloc.traffic import RequestContext, TrafficClassifier

LOGGER = structlog.get_logger(__name__)

SESSION_KEY_PREFIX = "LocationData:"
RATE_LIMIT_DELAY_SECONDS = 0.1
NULL_PLACEHOLDER = "(null)"

Query = Union[LocationDescriptor, str, None]


@dataclass(slots=True)
class TextQuery:
    """Geocoder queries built from a descriptor, with the best accuracy they can reach."""

    full: str
    simple: str
    best: AccuracySource


@dataclass(slots=True)
class _Coordinates:
    latitude: str
    longitude: str
    postal_code: Optional[str]


def build_text_query(descriptor: LocationDescriptor) -> TextQuery:
    """Concatenate street, city, state and zipcode, folding each one's accuracy with ``min``."""
    best = AccuracySource.Earth
    if descriptor.freeform_location:
        location = descriptor.freeform_location
        return TextQuery(full=location, simple=location, best=min(best, AccuracySource.City))

    parts = []
    contributions = (
        (descriptor.street, AccuracySource.PostalAddress),
        (descriptor.city, AccuracySource.City),
        (descriptor.state, AccuracySource.Country),
        (descriptor.zipcode, AccuracySource.PostalCode),
    )
    for value, accuracy in contributions:
        if value:
            parts.append(value)
            best = min(best, accuracy)
    return TextQuery(full=",".join(parts), simple=descriptor.city or "", best=best)


def split_coordinates(raw: str) -> Optional[Tuple[str, str]]:
    """Split a ``longitude,latitude[,altitude]`` triple into ``(latitude, longitude)`` strings."""
    pieces = [piece.strip() for piece in raw.split(",")]
    if len(pieces) < 2:
        return None
    longitude, latitude = pieces[0], pieces[1]
    try:
        if not Decimal(longitude).is_finite() or not Decimal(latitude).is_finite():
            return None
    except InvalidOperation:
        return None
    return latitude, longitude


def is_ip_address(value: str) -> bool:
    try:
        ipaddress.ip_address(value.strip())
    except ValueError:
        return False
    return True


def session_key(query: Query) -> str:
    if isinstance(query, LocationDescriptor):
        token = query.cache_token()
    else:
        token = orjson.dumps(query).decode()
    return SESSION_KEY_PREFIX + token


def _clean_nulls(result: IpGeolocation) -> IpGeolocation:
    cleaned = {key: "" if value == NULL_PLACEHOLDER else value for key, value in result.model_dump().items()}
    return IpGeolocation(**cleaned)


class LocationResolver:
    """Resolves a coordinate from address fragments or an IP.

    The text route issues the full query, then (optionally) a simplified
    city-only query, and falls back to the IP route when neither yields
    coordinates. A rate-limited geocoder stops the waterfall immediately and
    the recommended delay is returned to the caller instead of slept.
    Collaborator failures never escape ``resolve``.
    """

    def __init__(
        self,
        *,
        geocoder: TextGeocoder,
        ip_geolocator: IpGeolocator,
        visitors: VisitorLocationStore,
        classifier: TrafficClassifier,
        audit: AuditLog,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        self._geocoder = geocoder
        self._ip_geolocator = ip_geolocator
        self._visitors = visitors
        self._classifier = classifier
        self._audit = audit
        self._metrics = metrics or MetricsRegistry()

    async def resolve(
        self,
        query: Query = None,
        *,
        request: RequestContext,
        session: Optional[MutableMapping[str, Any]] = None,
        return_simple: bool = True,
        use_session_cache: bool = True,
        service_url: Optional[str] = None,
    ) -> ResolveOutcome:
        cache_key: Optional[str] = None
        if use_session_cache and session is not None:
            cache_key = session_key(query)
            if cache_key in session:
                self._metrics.incr("session_cache_hits")
                return session[cache_key]

        if isinstance(query, LocationDescriptor) and query.has_text_fields():
            outcome = await self._resolve_text(
                query,
                request=request,
                return_simple=return_simple,
                service_url=service_url,
            )
        else:
            ip = self._fallback_ip(query, request)
            if ip is None:
                # nothing to go on; don't memoize an empty call
                cache_key = None
                outcome = NotFound()
            else:
                outcome = await self._lookup_ip(ip, request)

        if cache_key is not None and session is not None and not isinstance(outcome, RateLimited):
            session[cache_key] = outcome
        return outcome

    async def _resolve_text(
        self,
        descriptor: LocationDescriptor,
        *,
        request: RequestContext,
        return_simple: bool,
        service_url: Optional[str],
    ) -> ResolveOutcome:
        text = build_text_query(descriptor)
        coordinates: Optional[_Coordinates] = None
        rate_limited = False

        if text.full:
            coordinates, rate_limited = await self._geocode(text.full, service_url=service_url, simplified=False)

        retry_simple = return_simple and bool(text.simple) and text.simple != text.full
        if coordinates is None and not rate_limited and retry_simple:
            coordinates, rate_limited = await self._geocode(text.simple, service_url=service_url, simplified=True)

        if rate_limited:
            self._metrics.incr("geocode_rate_limited")
            LOGGER.warning("geocode_rate_limited", query=text.full, retry_after=RATE_LIMIT_DELAY_SECONDS)
            return RateLimited(retry_after=RATE_LIMIT_DELAY_SECONDS)

        if coordinates is not None:
            return ResolvedLocation(
                latitude=coordinates.latitude,
                longitude=coordinates.longitude,
                zipcode=coordinates.postal_code,
                source=text.best,
            )

        ip = self._fallback_ip(descriptor, request)
        if ip is None:
            return NotFound()
        return await self._lookup_ip(ip, request)

    async def _geocode(
        self,
        query: str,
        *,
        service_url: Optional[str],
        simplified: bool,
    ) -> Tuple[Optional[_Coordinates], bool]:
        """Run one geocoder call; returns the coordinates found and whether it was rate-limited."""
        self._metrics.incr("geocode_calls")
        try:
            with self._metrics.timed("geocode"):
                reply = await self._geocoder.geocode(query, base_url=service_url)
        except CollaboratorError as exc:
            self._metrics.incr("geocode_failures")
            LOGGER.warning("geocode_failed", query=query, simplified=simplified, error=str(exc))
            return None, False

        log_geocode_result(query=query, status=reply.status, simplified=simplified)
        if reply.rate_limited:
            return None, True
        if not reply.ok:
            return None, False
        split = split_coordinates(reply.coordinates)
        if split is None:
            LOGGER.warning("geocode_coordinates_malformed", query=query, coordinates=reply.coordinates)
            return None, False
        latitude, longitude = split
        return _Coordinates(latitude=latitude, longitude=longitude, postal_code=reply.postal_code), False

    @staticmethod
    def _fallback_ip(query: Query, request: RequestContext) -> Optional[str]:
        if isinstance(query, LocationDescriptor) and query.ip:
            return query.ip
        if isinstance(query, str) and is_ip_address(query):
            return query.strip()
        return request.remote_addr or None

    async def _lookup_ip(self, ip: str, request: RequestContext) -> ResolveOutcome:
        if not self._ip_geolocator.configured:
            log_ip_lookup(ip=ip, outcome="not_configured")
            return NotFound()
        if await self._classifier.is_robot(request) or self._classifier.is_server(request):
            log_ip_lookup(ip=ip, outcome="filtered")
            return NotFound()

        cached = await self._visitors.get(ip)
        if cached is not None:
            self._metrics.incr("visitor_cache_hits")
            log_ip_lookup(ip=ip, outcome="visitor_cache")
            return ResolvedLocation(
                latitude=cached.latitude,
                longitude=cached.longitude,
                country_code=cached.country_code or None,
                source=AccuracySource.IPGuess,
            )

        self._metrics.incr("ip_lookups")
        try:
            with self._metrics.timed("ip_lookup"):
                result = await self._ip_geolocator.geolocate(ip)
        except GeolocError as exc:
            self._metrics.incr("ip_lookup_errors")
            LOGGER.warning("ip_lookup_failed", ip=ip, error=str(exc))
            await self._audit.record(ip, None)
            return NotFound()

        result = _clean_nulls(result)
        await self._audit.record(ip, result)
        if not result.latitude or not result.longitude:
            log_ip_lookup(ip=ip, outcome="no_coordinates")
            return NotFound()

        log_ip_lookup(ip=ip, outcome="resolved")
        return ResolvedLocation(
            latitude=result.latitude,
            longitude=result.longitude,
            zipcode=result.zip or None,
            country_code=result.country_code or None,
            state=result.state or None,
            city=result.city or None,
            isp=result.isp or None,
            organization=result.organization or None,
            metro_code=result.metro_code or None,
            area_code=result.area_code or None,
            source=AccuracySource.IPGuess,
        )
