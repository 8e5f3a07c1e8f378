#!/usr/bin/env python
"""Populate the visitor store with random demo visitors."""
from __future__ import annotations

import argparse
from pathlib import Path

from dotenv import load_dotenv

from geoloc.main import main as geoloc_main


def main() -> None:
    """Thin wrapper around ``geoloc seed-visitors``."""
    load_dotenv()
    parser = argparse.ArgumentParser(description="Seed the visitor store with demo visitors")
    parser.add_argument("--count", type=int, default=50, help="Number of visitors to add")
    parser.add_argument("--settings", type=Path, default=Path("config/settings.toml"))
    args = parser.parse_args()
    geoloc_main(["--settings", str(args.settings), "seed-visitors", "--count", str(args.count)])


if __name__ == "__main__":
    main()
