#!/usr/bin/env python3
"""
CalDAV MCP Server

Exposes CalDAV calendar operations (list calendars, create events, list
events, fetch recurring-event masters) as Model Context Protocol tools.

Setup:
1. Set environment variables (or put them in a .env file):
   - CALDAV_BASE_URL: CalDAV base URL (e.g., https://caldav.example.com/dav/calendars/user/)
   - CALDAV_USERNAME: Basic auth user name
   - CALDAV_PASSWORD: Basic auth password
2. Run: caldav-mcp            (stdio transport)
   or:  caldav-mcp --transport http --port 3000
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

import uvicorn
from caldav.lib.error import DAVError

from .config import Settings, load_settings
from .errors import CalendarServiceError
from .http import create_app
from .service import CalendarService
from .tools import build_server

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Send all log output to stderr; stdout carries the stdio protocol."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )


def print_missing_config() -> None:
    err = sys.stderr
    print("\n" + "=" * 70, file=err)
    print("⚠️  CalDAV MCP Server - Configuration Required", file=err)
    print("=" * 70, file=err)
    print("\nMissing required environment variable:", file=err)
    print("  - CALDAV_BASE_URL: Your CalDAV server URL", file=err)
    print("\nAlso set the basic auth credentials:", file=err)
    print("  - CALDAV_USERNAME", file=err)
    print("  - CALDAV_PASSWORD", file=err)
    print("\nSet environment variables (or add them to a .env file):", file=err)
    print('  export CALDAV_BASE_URL="https://caldav.example.com/"', file=err)
    print('  export CALDAV_USERNAME="you@example.com"', file=err)
    print('  export CALDAV_PASSWORD="..."', file=err)
    print("\nThen run the server again.", file=err)
    print("=" * 70 + "\n", file=err)


def log_environment(settings: Settings) -> None:
    logger.info("Environment check:")
    logger.info("CALDAV_BASE_URL: %s", "Set" if settings.base_url else "Not set")
    logger.info("CALDAV_USERNAME: %s", "Set" if settings.username else "Not set")
    logger.info("CALDAV_PASSWORD: %s", "Set" if settings.password else "Not set")


async def run_stdio(settings: Settings) -> None:
    """Initialize one calendar service and serve it over stdio."""
    service = CalendarService(settings)
    await service.initialize()
    server = build_server(service)
    logger.info("Serving %d calendar(s) over stdio", len(service.calendars))
    await server.run_stdio_async()


def run_http(settings: Settings) -> None:
    logger.info(
        "Serving MCP over HTTP at http://%s:%s%s",
        settings.http_host,
        settings.http_port,
        settings.http_path,
    )
    uvicorn.run(
        create_app(settings),
        host=settings.http_host,
        port=settings.http_port,
        log_level=settings.log_level.lower(),
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="caldav-mcp",
        description="Expose a CalDAV calendar as Model Context Protocol tools.",
    )
    parser.add_argument(
        "--transport",
        choices=("stdio", "http"),
        default="stdio",
        help="MCP transport to serve (default: stdio)",
    )
    parser.add_argument("--host", help="HTTP bind address (default: CALDAV_MCP_HOST or 127.0.0.1)")
    parser.add_argument("--port", type=int, help="HTTP port (default: CALDAV_MCP_PORT or 3000)")
    parser.add_argument("--log-level", help="Logging level (default: CALDAV_MCP_LOG_LEVEL or INFO)")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    overrides = {}
    if args.host:
        overrides["http_host"] = args.host
    if args.port:
        overrides["http_port"] = args.port
    if args.log_level:
        overrides["log_level"] = args.log_level.upper()
    settings = load_settings().model_copy(update=overrides)

    configure_logging(settings.log_level)
    log_environment(settings)

    if not settings.base_url:
        print_missing_config()
        return 1

    if args.transport == "http":
        run_http(settings)
        return 0

    try:
        asyncio.run(run_stdio(settings))
    except (CalendarServiceError, DAVError) as e:
        logger.error("Error in main: %s", e)
        return 1
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
