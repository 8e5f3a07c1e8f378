"""Command-line entrypoints for the visitor geolocation tools."""
from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

from geoloc.config import Settings, load_settings
from geoloc.errors import ConfigurationError
from geoloc.models import LocationDescriptor, ResolvedLocation, ResolveOutcome
from geoloc.observability.log import configure_logging
from geoloc.runtime import Runtime, open_runtime
from geoloc.seed import seed_visitors
from geoloc.traffic import RequestContext

CLI_USER_AGENT = "Mozilla/5.0 (compatible; geoloc-cli)"


def build_arg_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(prog="geoloc", description="Visitor geolocation tools")
    parser.add_argument("--settings", default="config/settings.toml", help="Path to the TOML settings file")
    parser.add_argument("--logging", default="config/logging.yaml", help="Path to the logging YAML file")
    parser.add_argument(
        "--verbose",
        nargs="?",
        const="DEBUG",
        choices=["DEBUG", "INFO"],
        help="Lower the package log level (default DEBUG when given without a value)",
    )
    parser.add_argument("--metrics-out", type=Path, help="Write lookup counters and latencies to this JSON file")
    sub = parser.add_subparsers(dest="command", required=True)

    resolve = sub.add_parser("resolve", help="Resolve a coordinate from address fragments or an IP")
    resolve.add_argument("--street")
    resolve.add_argument("--city")
    resolve.add_argument("--state")
    resolve.add_argument("--zipcode")
    resolve.add_argument("--country")
    resolve.add_argument("--country-iso3")
    resolve.add_argument("--location", help="Free-form location used verbatim as the query")
    resolve.add_argument("--ip", help="IP address to fall back to (or resolve on its own)")
    resolve.add_argument("--remote-addr", help="Address to treat as the requester's own")
    resolve.add_argument("--no-simple", action="store_true", help="Skip the simplified city-only retry")
    resolve.add_argument("--service-url", help="Override the geocoder base URL")

    visitors = sub.add_parser("visitors", help="List the most recent visitors")
    visitors.add_argument("--limit", type=int, default=0, help="Maximum entries to show (0 = all)")

    forget = sub.add_parser("forget", help="Remove an IP from the visitor store")
    forget.add_argument("ip")

    seed = sub.add_parser("seed-visitors", help="Fill the visitor store with random demo visitors (dev only)")
    seed.add_argument("--count", type=int, default=50, help="Number of visitors to add")

    return parser


def _descriptor_from_args(args: argparse.Namespace) -> Optional[LocationDescriptor]:
    fields = {
        "street": args.street,
        "city": args.city,
        "state": args.state,
        "zipcode": args.zipcode,
        "country": args.country,
        "country_iso3": args.country_iso3,
        "freeform_location": args.location,
        "ip": args.ip,
    }
    if not any(fields.values()):
        return None
    return LocationDescriptor(**fields)


def outcome_to_json(outcome: ResolveOutcome) -> Dict[str, object]:
    payload = outcome.model_dump(mode="json", exclude_none=True)
    if isinstance(outcome, ResolvedLocation):
        payload["source"] = outcome.source.name
    return payload


async def run_command(args: argparse.Namespace, settings: Settings) -> int:
    """Execute one sub-command against a freshly opened runtime."""
    async with open_runtime(settings) as runtime:
        exit_code = await _dispatch(args, settings, runtime)
        if args.metrics_out is not None:
            runtime.metrics.export(args.metrics_out, command=args.command)
    return exit_code


async def _dispatch(args: argparse.Namespace, settings: Settings, runtime: Runtime) -> int:
    if args.command == "resolve":
        request = RequestContext(
            remote_addr=args.remote_addr,
            user_agent=CLI_USER_AGENT,
            server_addr=settings.app.server_addr,
        )
        outcome = await runtime.resolver.resolve(
            _descriptor_from_args(args),
            request=request,
            return_simple=not args.no_simple,
            use_session_cache=False,
            service_url=args.service_url,
        )
        print(json.dumps(outcome_to_json(outcome), indent=2))
        return 0 if isinstance(outcome, ResolvedLocation) else 1

    if args.command == "visitors":
        entries = await runtime.visitors.snapshot(args.limit)
        print(json.dumps([record.model_dump() for _, record in entries], indent=2))
        return 0

    if args.command == "forget":
        removed = await runtime.visitors.remove(args.ip)
        print(json.dumps({"ip": args.ip, "ok": removed}))
        return 0 if removed else 1

    if args.command == "seed-visitors":
        if not settings.app.development:
            print("seed-visitors only runs on a development instance")
            return 1
        records = await seed_visitors(runtime.visitors, args.count)
        print(json.dumps({"added": len(records)}))
        return 0
    return 2


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI."""
    load_dotenv()
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    try:
        settings = load_settings(Path(args.settings))
        configure_logging(Path(args.logging), pretty=settings.app.development, verbose=args.verbose)
        exit_code = asyncio.run(run_command(args, settings))
    except ConfigurationError as exc:
        raise SystemExit(f"Configuration error: {exc}")
    if exit_code:
        raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
