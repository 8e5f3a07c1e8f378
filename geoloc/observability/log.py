"""Structured logging initialisation utilities."""
from __future__ import annotations

import logging
import logging.config
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
import yaml

# loggers raised to the requested level by ``verbose``
VERBOSE_LOGGERS = ("geoloc", "geoloc.trace")


def _processors(pretty: bool) -> List[Any]:
    renderer = structlog.dev.ConsoleRenderer(colors=False) if pretty else structlog.processors.JSONRenderer()
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        renderer,
    ]


def configure_logging(config_path: Path, *, pretty: bool = False, verbose: Optional[str] = None) -> None:
    """Apply the YAML dictConfig (or a plain stderr fallback) and route structlog through stdlib.

    ``pretty`` swaps the JSON renderer for key=value console output, which is
    what a development instance wants. ``verbose`` names a level such as
    ``"DEBUG"`` for the package and trace loggers, overriding the YAML.
    """
    if config_path.exists():
        with config_path.open("r", encoding="utf-8") as handle:
            config: Dict[str, Any] = yaml.safe_load(handle)
        logging.config.dictConfig(config)
    else:
        logging.basicConfig(level=logging.INFO, format="%(message)s")

    if verbose:
        for name in VERBOSE_LOGGERS:
            logging.getLogger(name).setLevel(verbose.upper())

    structlog.configure(
        processors=_processors(pretty),
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
