"""Settings loaded from TOML, validated with pydantic, secrets overridable from the environment."""
from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from geoloc.errors import ConfigurationError
from geoloc.storage.backends import CoordinateStore, FileBackend, MemoryBackend, RedisBackend

DEFAULT_SETTINGS_PATH = Path("config/settings.toml")
DEVELOPMENT_INSTANCE = "dev"


class AppSettings(BaseModel):
    instance: str = "prod"
    server_addr: Optional[str] = None
    audit_log: Path = Path("logs/geo_ip_call.log")

    @property
    def development(self) -> bool:
        return self.instance == DEVELOPMENT_INSTANCE


class GeocoderSettings(BaseModel):
    base_url: str = "http://maps.google.com/maps/geo"
    api_key: str = ""
    timeout_seconds: float = Field(default=10.0, gt=0)


class IpGeolocationSettings(BaseModel):
    base_url: str = "https://geoip.maxmind.com/f"
    license_key: Optional[str] = None
    timeout_seconds: float = Field(default=10.0, gt=0)


class VisitorSettings(BaseModel):
    """``max_visitor_count = 0`` turns visitor and robot logging off."""

    max_visitor_count: int = Field(default=1000, ge=0)
    backend: str = "memory"
    file_dir: Path = Path("logs")
    redis_url: str = "redis://localhost:6379/0"
    ttl_seconds: int = Field(default=3600, gt=0)


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    geocoder: GeocoderSettings = Field(default_factory=GeocoderSettings)
    ip_geolocation: IpGeolocationSettings = Field(default_factory=IpGeolocationSettings)
    visitors: VisitorSettings = Field(default_factory=VisitorSettings)


def load_settings(path: Path = DEFAULT_SETTINGS_PATH) -> Settings:
    """Read the TOML configuration file; a missing file yields the defaults."""
    payload = {}
    if path.exists():
        with path.open("rb") as handle:
            payload = tomllib.load(handle)
    try:
        settings = Settings.model_validate(payload)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid settings in {path}: {exc}") from exc

    if api_key := os.environ.get("GEOCODER_API_KEY"):
        settings.geocoder.api_key = api_key
    if license_key := os.environ.get("GEOIP_LICENSE_KEY"):
        settings.ip_geolocation.license_key = license_key
    return settings


def build_backend(visitors: VisitorSettings) -> CoordinateStore:
    """Instantiate the backing store named in the settings."""
    if visitors.backend == "memory":
        return MemoryBackend()
    if visitors.backend == "file":
        return FileBackend(visitors.file_dir)
    if visitors.backend == "redis":
        return RedisBackend.from_url(visitors.redis_url)
    raise ConfigurationError(f"Unknown visitor backend: {visitors.backend!r}")
