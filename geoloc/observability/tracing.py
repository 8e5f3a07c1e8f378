"""Tracing helpers for external lookups and per-request context."""
from __future__ import annotations

import contextlib
import time
from typing import Iterator, Optional

import structlog
from structlog.contextvars import bind_contextvars, unbind_contextvars


def _logger():
    return structlog.get_logger("geoloc.trace")


def bind_request(*, remote_addr: Optional[str], path: str) -> None:
    bind_contextvars(remote_addr=remote_addr, path=path)


def clear_request() -> None:
    unbind_contextvars("remote_addr", "path")


@contextlib.contextmanager
def span(*, name: str, target: Optional[str] = None) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        _logger().info("trace_span", span=name, target=target, elapsed_ms=elapsed_ms)


def log_geocode_result(*, query: str, status: Optional[str], simplified: bool) -> None:
    _logger().info("geocode_result", query=query, status=status, simplified=simplified)


def log_ip_lookup(*, ip: str, outcome: str) -> None:
    _logger().info("ip_lookup", ip=ip, outcome=outcome)
