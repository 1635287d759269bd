"""``osslite`` console script: load the YAML config and serve it with uvicorn."""

import argparse
import logging
import sys
from pathlib import Path

import uvicorn

from osslite.config import OSSLiteConfig, load_config
from osslite.logging_config import configure_logging
from osslite.server import create_app

logger = logging.getLogger("osslite")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Flags that replace a ``server`` setting. The argparse dest of each flag
# is the name of the field it sets.
_SERVER_FLAGS: tuple[tuple[str, dict], ...] = (
    ("--host", {"metavar": "ADDR", "help": "bind address"}),
    ("--port", {"type": int, "help": "listen port"}),
    ("--log-level", {"choices": LOG_LEVELS, "help": "minimum level logged"}),
    ("--log-format", {"choices": ("text", "json"), "help": "log line shape"}),
    (
        "--shutdown-timeout",
        {"type": int, "metavar": "SECONDS", "help": "grace period for in-flight requests"},
    ),
)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="osslite",
        description="Serve an OSS-compatible object store.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("osslite.yaml"),
        metavar="PATH",
        help="YAML settings file (default: %(default)s)",
    )
    server_flags = parser.add_argument_group("server settings", "override the config file")
    for flag, options in _SERVER_FLAGS:
        server_flags.add_argument(flag, default=None, **options)
    return parser.parse_args(argv)


def apply_overrides(config: OSSLiteConfig, args: argparse.Namespace) -> OSSLiteConfig:
    """Copy every server flag that was given onto ``config.server``."""
    for flag, _ in _SERVER_FLAGS:
        field = flag.lstrip("-").replace("-", "_")
        value = getattr(args, field)
        if value is not None:
            setattr(config.server, field, value)
    return config


def _load_or_exit(path: Path) -> OSSLiteConfig:
    try:
        return load_config(path)
    except FileNotFoundError:
        logger.error("Config file not found: %s", path)
    except Exception as exc:
        logger.error("Could not read config %s: %s", path, exc)
    sys.exit(1)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)

    config = apply_overrides(_load_or_exit(args.config), args)
    server = config.server
    configure_logging(level=server.log_level, fmt=server.log_format)
    logger.info("osslite listening on %s:%d, region %s", server.host, server.port, server.region)

    uvicorn.run(
        create_app(config),
        host=server.host,
        port=server.port,
        log_level=server.log_level.lower(),
        timeout_graceful_shutdown=server.shutdown_timeout,
        timeout_keep_alive=5,
    )


if __name__ == "__main__":
    main()
