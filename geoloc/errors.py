"""Error taxonomy for collaborator and configuration failures."""
from __future__ import annotations


class GeolocError(Exception):
    """Base class for errors raised inside the geolocation core."""


class CollaboratorError(GeolocError):
    """An external service was unreachable or answered with something unusable."""


class ConfigurationError(GeolocError):
    """A required setting (credential, backend name) is missing or invalid."""
