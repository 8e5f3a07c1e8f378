"""Client for the XML address geocoding web service."""
from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx
import structlog
from bs4 import BeautifulSoup, XMLParsedAsHTMLWarning

from geoloc.errors import CollaboratorError
from geoloc.observability.tracing import span

LOGGER = structlog.get_logger(__name__)

STATUS_OK = "200"
STATUS_RATE_LIMITED = "620"


@dataclass(slots=True)
class GeocodeReply:
    """Status code of a geocode call plus whatever placemark data came back."""

    status: Optional[str]
    coordinates: Optional[str] = None
    postal_code: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK and bool(self.coordinates)

    @property
    def rate_limited(self) -> bool:
        return self.status == STATUS_RATE_LIMITED


class TextGeocoder(Protocol):
    async def geocode(self, query: str, *, base_url: Optional[str] = None) -> GeocodeReply:
        ...


def _text(tag) -> Optional[str]:
    if tag is None:
        return None
    value = tag.get_text(strip=True)
    return value or None


def parse_geocode_response(body: str) -> GeocodeReply:
    """Extract status, ``lon,lat,alt`` coordinates and postal code from the XML payload."""
    with warnings.catch_warnings():
        # tag names come back lowercased, which the lookups below rely on
        warnings.simplefilter("ignore", XMLParsedAsHTMLWarning)
        soup = BeautifulSoup(body, "html.parser")
    response = soup.find("response")
    if response is None:
        raise CollaboratorError("geocoder response has no Response element")
    status_tag = response.find("status")
    status = _text(status_tag.find("code")) if status_tag is not None else None
    if status is None:
        raise CollaboratorError("geocoder response has no status code")
    reply = GeocodeReply(status=status)
    if status != STATUS_OK:
        return reply
    placemark = response.find("placemark")
    if placemark is None:
        return reply
    point = placemark.find("point")
    reply.coordinates = _text(point.find("coordinates")) if point is not None else None
    details = placemark.find("addressdetails")
    if details is not None:
        reply.postal_code = _text(details.find("postalcodenumber"))
    return reply


class HttpTextGeocoder:
    """Queries ``<base_url>?output=xml&key=...&q=...`` and parses the XML answer."""

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        base_url: str,
        api_key: str,
        timeout: float = 10.0,
    ) -> None:
        self._client = client
        self._base_url = base_url
        self._api_key = api_key
        self._timeout = timeout

    async def geocode(self, query: str, *, base_url: Optional[str] = None) -> GeocodeReply:
        url = base_url or self._base_url
        params = {"output": "xml", "key": self._api_key, "q": query}
        try:
            with span(name="geocode", target=url):
                response = await self._client.get(url, params=params, timeout=self._timeout)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            LOGGER.warning("geocode_http_error", url=url, error=str(exc))
            raise CollaboratorError(f"geocoder request failed: {exc}") from exc
        return parse_geocode_response(response.text)
