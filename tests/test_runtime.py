import asyncio

import httpx

from geoloc.config import Settings
from geoloc.models import ResolvedLocation
from geoloc.runtime import open_runtime
from geoloc.storage.backends import MemoryBackend
from geoloc.traffic import RequestContext

MAXMIND_ROW = 'US,TX,Austin,78701,30.2672,-97.7431,635,512,"Example ISP","Example Org"\n'
BROWSER = "Mozilla/5.0 (X11; Linux x86_64; rv:120.0) Gecko/20100101 Firefox/120.0"


def _settings(tmp_path) -> Settings:
    settings = Settings()
    settings.app.audit_log = tmp_path / "geo_ip_call.log"
    settings.ip_geolocation.license_key = "licence"
    return settings


def test_visitor_flow_through_http_collaborators(tmp_path):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.host)
        return httpx.Response(200, text=MAXMIND_ROW)

    settings = _settings(tmp_path)

    async def _run():
        async with open_runtime(
            settings, backend=MemoryBackend(), transport=httpx.MockTransport(handler)
        ) as runtime:
            request = RequestContext(remote_addr="198.51.100.7", user_agent=BROWSER)
            logged = await runtime.manager.manage_current_locations(request, {})
            return logged, await runtime.visitors.snapshot(), runtime.metrics.snapshot()

    logged, entries, metrics = asyncio.run(_run())
    assert logged is True
    assert calls == ["geoip.maxmind.com"]
    assert entries[0][1].latitude == "30.2672"
    assert metrics["visitors_logged"] == 1
    assert metrics["latency"]["ip_lookup"]["calls"] == 1
    assert "198.51.100.7 : Austin, TX, 78701, US, -97.7431, 30.2672" in settings.app.audit_log.read_text()


def test_resolver_reports_ip_guess_with_isp(tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=MAXMIND_ROW)

    async def _run():
        async with open_runtime(
            _settings(tmp_path), backend=MemoryBackend(), transport=httpx.MockTransport(handler)
        ) as runtime:
            request = RequestContext(remote_addr=None, user_agent=BROWSER)
            return await runtime.resolver.resolve("198.51.100.8", request=request, session={})

    outcome = asyncio.run(_run())
    assert isinstance(outcome, ResolvedLocation)
    assert outcome.isp == "Example ISP"
    assert outcome.organization == "Example Org"
    assert outcome.metro_code == "635"
