"""
Command-line entrypoint for the session broker.

Loads configuration (optional YAML file plus environment overrides),
configures logging and serves the HTTP API with uvicorn.
"""

from __future__ import annotations

import argparse
import os
import sys

from disposable.config.logging_config import configure_logging, get_logger
from disposable.config.settings import load_config_with_env


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the disposable browser session broker.")
    parser.add_argument(
        "--config",
        default=os.environ.get("DISPOSABLE_CONFIG"),
        help="Path to a YAML configuration file (or set DISPOSABLE_CONFIG). Optional.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (defaults to LOG_LEVEL or INFO).",
    )
    parser.add_argument("--host", default=None, help="Bind host (overrides HOST).")
    parser.add_argument("--port", type=int, default=None, help="Bind port (overrides PORT).")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Entrypoint used by `python -m disposable` and the `disposable-suite` script."""
    args = parse_args(argv if argv is not None else sys.argv[1:])

    try:
        config = load_config_with_env(args.config)
    except (FileNotFoundError, ValueError) as exc:
        raise SystemExit(f"Failed to load configuration: {exc}") from exc

    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port
    if args.log_level:
        config.server.log_level = args.log_level.upper()

    # module loggers resolve their level from the environment on import
    os.environ["DISPOSABLE_LOG_LEVEL"] = config.server.log_level
    configure_logging(config.server.log_level)
    log = get_logger("disposable")
    log.info(
        f"Starting broker on {config.server.host}:{config.server.port} "
        f"(image={config.runtime.image}, max_sessions={config.sessions.max_sessions}, "
        f"persistence={'on' if config.mirror.enabled else 'off'})"
    )

    from disposable.api.server import run_server

    try:
        run_server(config)
    except KeyboardInterrupt:  # pragma: no cover - runtime signal
        log.info("Broker shutdown requested by user")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
