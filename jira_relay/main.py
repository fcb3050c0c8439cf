"""
Relay entry point.

Loads configuration, configures logging, and serves the HTTP app.
"""

from __future__ import annotations

import argparse
import logging
import sys

import structlog
import uvicorn

from .api import create_app
from .config import load_config


def configure_logging(level: str = "info", fmt: str = "json") -> None:
    """Configure structlog with the specified level and format."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelNamesMapping()[level.upper()]
        ),
    )


def run() -> None:
    """CLI entry point for the relay."""
    parser = argparse.ArgumentParser(description="Jira → chat channel subscription relay")
    parser.add_argument(
        "-c", "--config",
        default="jira-relay.yaml",
        help="Path to configuration file (default: jira-relay.yaml)",
    )
    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except FileNotFoundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except Exception as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)

    configure_logging(config.logging.level, config.logging.format)
    log = structlog.get_logger()
    log.info(
        "relay.config_loaded",
        config_path=args.config,
        store=config.store.backend,
        compare_and_set=config.store.compare_and_set,
    )

    app = create_app(config)
    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level,
    )


if __name__ == "__main__":
    run()
