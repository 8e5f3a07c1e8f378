import logging

import structlog

from geoloc.observability.log import configure_logging


def test_verbose_lowers_package_loggers(tmp_path):
    config = tmp_path / "logging.yaml"
    config.write_text(
        "version: 1\ndisable_existing_loggers: false\nloggers:\n  geoloc:\n    level: WARNING\n",
        encoding="utf-8",
    )
    configure_logging(config, verbose="debug")
    assert logging.getLogger("geoloc").level == logging.DEBUG
    assert logging.getLogger("geoloc.trace").level == logging.DEBUG


def test_pretty_output_uses_console_renderer(tmp_path):
    configure_logging(tmp_path / "missing.yaml", pretty=True)
    processors = structlog.get_config()["processors"]
    assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)
    configure_logging(tmp_path / "missing.yaml")
    assert isinstance(structlog.get_config()["processors"][-1], structlog.processors.JSONRenderer)
