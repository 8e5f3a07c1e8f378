"""Robot and self-traffic gating for visitor tracking."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

import structlog

from geoloc.observability.metrics import MetricsRegistry
from geoloc.storage.ledger import RobotLedger

LOGGER = structlog.get_logger(__name__)

ROBOTS_PATH_PREFIX = "/robots."
ROBOT_TOKENS = re.compile(r"(\b[\w-]+bot\b|crawl|spider|slurp|jeeves)", re.IGNORECASE)
BROWSER_TOKENS = re.compile(r"(mozilla|msie|opera|gecko|webkit|khtml)", re.IGNORECASE)
MISSING_USER_AGENT = "no UA header provided"


@dataclass(slots=True)
class RequestContext:
    """The parts of an incoming request the classifier and resolver look at."""

    remote_addr: Optional[str]
    path: str = "/"
    user_agent: Optional[str] = None
    server_addr: Optional[str] = None


def looks_like_robot(user_agent: Optional[str]) -> bool:
    """User-agent heuristic: robot tokens, or no recognisable browser engine."""
    if not user_agent:
        return True
    return bool(ROBOT_TOKENS.search(user_agent)) or not BROWSER_TOKENS.search(user_agent)


class TrafficClassifier:
    """Decides whether a request comes from a robot or from the server itself.

    While the robot ledger is enabled, only the robots-policy path and IPs
    already in the ledger count as robots; the user-agent heuristic applies
    when the ledger is switched off.
    """

    def __init__(
        self,
        robots: RobotLedger,
        *,
        development: bool = False,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        self._robots = robots
        self._development = development
        self._metrics = metrics or MetricsRegistry()

    async def is_robot(self, request: RequestContext) -> bool:
        if request.path.startswith(ROBOTS_PATH_PREFIX):
            robot = True
        elif self._robots.enabled:
            robot = bool(request.remote_addr) and await self._robots.contains(request.remote_addr)
        else:
            robot = looks_like_robot(request.user_agent)

        if robot:
            self._metrics.incr("robots_detected")
            if self._robots.enabled and request.remote_addr:
                await self._robots.record(request.remote_addr, request.user_agent or MISSING_USER_AGENT)
        return robot

    def is_server(self, request: RequestContext) -> bool:
        if self._development or not request.remote_addr:
            return False
        return request.remote_addr == request.server_addr
