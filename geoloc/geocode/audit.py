"""Append-only log of every call made to the IP-geolocation service."""
from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Optional

import structlog

from geoloc.models import IpGeolocation

LOGGER = structlog.get_logger(__name__)


def format_audit_line(ip: str, result: Optional[IpGeolocation], *, at: datetime) -> str:
    prefix = f"{at.strftime('%Y-%m-%d %H:%M:%S')} {ip} : "
    if result is None:
        return prefix + "ERROR\n"
    fields = [result.city, result.state, result.zip, result.country_code, result.longitude, result.latitude]
    return prefix + ", ".join(fields) + "\n"


class AuditLog:
    """Writes one line per lookup: timestamp, IP, and the answer or ``ERROR``."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    async def record(self, ip: str, result: Optional[IpGeolocation]) -> None:
        line = format_audit_line(ip, result, at=datetime.now())
        await asyncio.to_thread(self._append, line)

    def _append(self, line: str) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(line)
        except OSError as exc:
            LOGGER.error("audit_write_failed", path=str(self._path), error=str(exc))
