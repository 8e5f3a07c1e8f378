"""Client for the city/ISP/organization IP-geolocation web service."""
from __future__ import annotations

import csv
import io
from typing import Optional, Protocol

import httpx
import structlog

from geoloc.errors import CollaboratorError, ConfigurationError
from geoloc.models import IpGeolocation
from geoloc.observability.tracing import span

LOGGER = structlog.get_logger(__name__)

# country, region, city, postal, latitude, longitude, metro, area, isp, organization, error
_FIELD_COUNT = 11


class IpGeolocator(Protocol):
    @property
    def configured(self) -> bool:
        ...

    async def geolocate(self, ip: str) -> IpGeolocation:
        ...


def parse_ip_response(body: str) -> IpGeolocation:
    """Parse the single CSV line returned by the service."""
    rows = list(csv.reader(io.StringIO(body.strip())))
    if not rows:
        raise CollaboratorError("empty IP-geolocation response")
    fields = rows[0]
    if len(fields) < _FIELD_COUNT - 1:
        raise CollaboratorError(f"malformed IP-geolocation response: {body[:80]!r}")
    fields = fields + [""] * (_FIELD_COUNT - len(fields))
    error = fields[10].strip()
    if error:
        raise CollaboratorError(f"IP-geolocation error: {error}")
    return IpGeolocation(
        country_code=fields[0],
        state=fields[1],
        city=fields[2],
        zip=fields[3],
        latitude=fields[4],
        longitude=fields[5],
        metro_code=fields[6],
        area_code=fields[7],
        isp=fields[8],
        organization=fields[9],
    )


class HttpIpGeolocator:
    """Looks an address up with ``GET <base_url>?l=<license>&i=<ip>``."""

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        base_url: str,
        license_key: Optional[str],
        timeout: float = 10.0,
    ) -> None:
        self._client = client
        self._base_url = base_url
        self._license_key = license_key
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self._license_key)

    async def geolocate(self, ip: str) -> IpGeolocation:
        if not self.configured:
            raise ConfigurationError("no IP-geolocation license key configured")
        params = {"l": self._license_key, "i": ip}
        try:
            with span(name="ip_geolocate", target=ip):
                response = await self._client.get(self._base_url, params=params, timeout=self._timeout)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            LOGGER.warning("ip_geolocate_http_error", ip=ip, error=str(exc))
            raise CollaboratorError(f"IP-geolocation request failed: {exc}") from exc
        return parse_ip_response(response.text)
