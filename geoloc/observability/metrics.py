"""In-process counters and call latencies for geocoder and IP-service traffic."""
from __future__ import annotations

import contextlib
import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator

COUNTERS = (
    "geocode_calls",
    "geocode_rate_limited",
    "geocode_failures",
    "ip_lookups",
    "ip_lookup_errors",
    "visitor_cache_hits",
    "session_cache_hits",
    "robots_detected",
    "visitors_logged",
)


@dataclass(slots=True)
class LatencyStats:
    calls: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0

    def add(self, elapsed_ms: float) -> None:
        self.calls += 1
        self.total_ms += elapsed_ms
        self.max_ms = max(self.max_ms, elapsed_ms)

    @property
    def mean_ms(self) -> float:
        return self.total_ms / self.calls if self.calls else 0.0


class MetricsRegistry:
    """Counters keyed by name plus latency aggregates for outbound calls.

    Unknown counter names are accepted and start at zero.
    """

    def __init__(self) -> None:
        self._counters: Dict[str, int] = {name: 0 for name in COUNTERS}
        self._latency: Dict[str, LatencyStats] = {}

    def incr(self, name: str, value: int = 1) -> None:
        self._counters[name] = self._counters.get(name, 0) + value

    def get(self, name: str) -> int:
        return self._counters.get(name, 0)

    def observe(self, name: str, elapsed_ms: float) -> None:
        self._latency.setdefault(name, LatencyStats()).add(elapsed_ms)

    def latency(self, name: str) -> LatencyStats:
        return self._latency.get(name, LatencyStats())

    @contextlib.contextmanager
    def timed(self, name: str) -> Iterator[None]:
        """Record the wall time of the block under ``name``, even when it raises."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.observe(name, (time.perf_counter() - start) * 1000)

    def snapshot(self) -> Dict[str, object]:
        """Counters plus a ``latency`` section, ready for JSON output."""
        report: Dict[str, object] = dict(self._counters)
        report["latency"] = {
            name: {"calls": stats.calls, "mean_ms": round(stats.mean_ms, 3), "max_ms": round(stats.max_ms, 3)}
            for name, stats in sorted(self._latency.items())
        }
        return report

    def export(self, path: Path, *, command: str) -> Path:
        """Write the snapshot as JSON, tagged with the command that produced it."""
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "command": command,
            "metrics": self.snapshot(),
            "generated_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        }
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return path
