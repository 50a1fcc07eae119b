import argparse
import logging
import sys
from os import getenv

import uvicorn

from .config import DEFAULT_CONFIG_FILE, GatewayConfig, resolve_config
from .errors import ConfigurationError
from .main import create_app

logger = logging.getLogger("rewrite_gateway")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rewrite-gateway",
        description="HTTP gateway that rewrites request destinations with regex path rules.",
    )
    parser.add_argument(
        "--config",
        help=f"Path to configuration file (default: CONFIG_FILE env var or {DEFAULT_CONFIG_FILE})",
    )
    parser.add_argument(
        "--port",
        type=int,
        help="Port to listen on (default: PORT env var or 8080)",
    )
    parser.add_argument(
        "--host",
        help="Override default host from config",
    )
    parser.add_argument(
        "--follow-redirects",
        action="store_true",
        help="Follow redirects automatically (also FOLLOW_REDIRECTS=true)",
    )
    parser.add_argument(
        "--listen-host",
        default="0.0.0.0",
        help="Address to bind (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error"],
    )
    return parser


def describe(config: GatewayConfig, port: int) -> None:
    logger.info("Starting rewrite-gateway on port %d", port)
    if config.default_host:
        logger.info("Default host: %s", config.default_host)
    logger.info("Follow redirects: %s", config.follow_redirects)
    if config.path_mappings:
        logger.info("Path mappings (%d):", len(config.path_mappings))
        for i, mapping in enumerate(config.path_mappings, start=1):
            logger.info("  %d. %s -> %s", i, mapping.from_, mapping.to)
    if config.mirrors:
        logger.info("Mirrors (%d):", len(config.mirrors))
        for i, mirror in enumerate(config.mirrors, start=1):
            logger.info("  %d. %s", i, mirror)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = resolve_config(
        args.config or getenv("CONFIG_FILE") or DEFAULT_CONFIG_FILE,
        host_override=args.host,
        follow_redirects=args.follow_redirects or getenv("FOLLOW_REDIRECTS") == "true",
    )
    try:
        port = args.port or int(getenv("PORT") or 8080)
    except ValueError:
        logger.error("Invalid port: %s", getenv("PORT"))
        return 1

    try:
        app = create_app(config)
    except ConfigurationError as exc:
        logger.error("Failed to create gateway: %s", exc)
        return 1

    describe(config, port)
    uvicorn.run(app, host=args.listen_host, port=port, log_level=args.log_level)
    return 0


if __name__ == "__main__":
    sys.exit(main())
