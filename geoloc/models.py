"""Pydantic models shared by the resolver, ledgers and collaborators."""
from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional, Union

import orjson
from pydantic import BaseModel, Field

from geoloc.accuracy import AccuracySource

RATE_LIMIT_CODE = 620


class LocationDescriptor(BaseModel):
    """Partial address fragments and/or an IP describing where someone is."""

    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zipcode: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None
    country_iso3: Optional[str] = None
    freeform_location: Optional[str] = None
    ip: Optional[str] = None

    def has_text_fields(self) -> bool:
        """Return True when there is enough text to attempt geocoding."""
        return bool(
            (self.city and self.state)
            or (self.city and self.country_iso3)
            or self.zipcode
            or self.freeform_location
            or self.country
        )

    def cache_token(self) -> str:
        return orjson.dumps(self.model_dump(exclude_none=True), option=orjson.OPT_SORT_KEYS).decode()


class ResolvedLocation(BaseModel):
    """A coordinate with its provenance; coordinates stay decimal strings."""

    kind: Literal["resolved"] = "resolved"
    latitude: str
    longitude: str
    zipcode: Optional[str] = None
    country_code: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None
    isp: Optional[str] = None
    organization: Optional[str] = None
    metro_code: Optional[str] = None
    area_code: Optional[str] = None
    source: AccuracySource


class RateLimited(BaseModel):
    """The geocoder refused the query for sending too much; back off before retrying."""

    kind: Literal["rate_limited"] = "rate_limited"
    code: int = RATE_LIMIT_CODE
    retry_after: float = Field(default=0.1, description="Recommended delay in seconds")


class NotFound(BaseModel):
    """No route produced a coordinate."""

    kind: Literal["not_found"] = "not_found"


ResolveOutcome = Union[ResolvedLocation, RateLimited, NotFound]


class VisitorRecord(BaseModel):
    """Last known location of an anonymous visitor."""

    ip: str
    latitude: str
    longitude: str
    country_code: str = ""


class RobotEntry(BaseModel):
    """Last sighting of an IP classified as a robot."""

    user_agent: str
    last_seen: datetime


class IpGeolocation(BaseModel):
    """Raw answer of the IP-geolocation service."""

    city: str = ""
    state: str = ""
    zip: str = ""
    country_code: str = ""
    metro_code: str = ""
    area_code: str = ""
    isp: str = ""
    organization: str = ""
    latitude: str = ""
    longitude: str = ""


class UserProfile(BaseModel):
    """The location-related fields of an authenticated member."""

    zipcode: Optional[str] = None
    location: Optional[str] = None
    latitude: Optional[str] = None
    longitude: Optional[str] = None
    country_code: Optional[str] = None
    country_iso3: Optional[str] = None
