#!/usr/bin/env python3
"""
Setup Helper for the CalDAV MCP Server

This script helps you configure the CalDAV MCP Server by:
1. Checking that the required packages are installed
2. Checking the CALDAV_* environment variables
3. Testing the connection to the CalDAV server
4. Discovering your calendars
5. Generating an MCP client configuration snippet
"""

import asyncio
import importlib
import json
import sys
from pathlib import Path
from typing import List, Optional

from caldav.lib.error import DAVError

from .config import Settings, load_settings
from .errors import CalendarServiceError
from .models import CalendarRef
from .service import CalendarService

REQUIRED_PACKAGES = ("caldav", "icalendar", "pydantic", "mcp", "dotenv")


def print_header(text):
    """Print a formatted header."""
    print("\n" + "=" * 70)
    print(f"  {text}")
    print("=" * 70 + "\n")


def print_step(number, text):
    """Print a formatted step."""
    print(f"\n{'─' * 70}")
    print(f"  Step {number}: {text}")
    print("─" * 70 + "\n")


def check_dependencies() -> bool:
    """Check if required Python packages are installed."""
    print_step(1, "Checking Dependencies")

    missing = []
    for package in REQUIRED_PACKAGES:
        try:
            importlib.import_module(package)
            print(f"✓ {package:<20} installed")
        except ImportError:
            print(f"✗ {package:<20} MISSING")
            missing.append(package)

    if missing:
        print(f"\nWarning: Missing packages: {', '.join(missing)}")
        print("\nInstall them with:")
        print("  pip install caldav-mcp")
        return False

    print("\nAll dependencies installed!")
    return True


def check_environment(settings: Settings) -> bool:
    """Check that the CalDAV connection settings are configured."""
    print_step(2, "Checking CalDAV Settings")

    if settings.base_url:
        print(f"✓ CALDAV_BASE_URL: {settings.base_url}")
    else:
        print("✗ CALDAV_BASE_URL: Not set")

    if settings.username:
        print(f"✓ CALDAV_USERNAME: {settings.username}")
    else:
        print("✗ CALDAV_USERNAME: Not set")

    if settings.password:
        print(f"✓ CALDAV_PASSWORD: {'*' * 16} (hidden)")
    else:
        print("✗ CALDAV_PASSWORD: Not set")

    if not settings.base_url:
        print("\nWarning: CALDAV_BASE_URL is required!")
        print("\nSet the environment variables (or add them to a .env file):")
        print('  export CALDAV_BASE_URL="https://caldav.example.com/dav/calendars/user/"')
        print('  export CALDAV_USERNAME="you@example.com"')
        print('  export CALDAV_PASSWORD="..."')
        return False

    if not settings.username or not settings.password:
        print("\nNote: credentials are incomplete; the server may reject the connection.")

    print("\nSettings configured!")
    return True


def test_connection(settings: Settings) -> Optional[List[CalendarRef]]:
    """Connect to the CalDAV server and load its calendars."""
    print_step(3, "Testing Connection to the CalDAV Server")

    print(f"Connecting to: {settings.base_url}")
    print(f"Username: {settings.username or '(none)'}")
    print("Testing authentication...")

    service = CalendarService(settings)
    try:
        asyncio.run(service.initialize())
    except (CalendarServiceError, DAVError) as e:
        print(f"\nConnection failed: {e}")
        print("\nPossible issues:")
        print("  1. Incorrect user name or password")
        print("  2. CALDAV_BASE_URL does not point at a CalDAV collection")
        print("  3. Network connectivity issues")
        return None

    print("\nConnection successful!")
    return service.calendars


def show_calendars(calendars: List[CalendarRef]) -> None:
    """Print the discovered calendars."""
    print_step(4, "Discovering Calendars")

    print(f"Found {len(calendars)} calendar(s):\n")
    for i, calendar in enumerate(calendars, 1):
        components = ", ".join(calendar.components) or "unknown components"
        print(f"  {i}. {calendar.name} ({components})")

    print(f"\nDiscovered {len(calendars)} calendars!")


def build_mcp_config(settings: Settings) -> dict:
    """Return an MCP client configuration entry for this server."""
    return {
        "mcpServers": {
            "caldav": {
                "command": "caldav-mcp",
                "args": [],
                "env": {
                    "CALDAV_BASE_URL": settings.base_url or "",
                    "CALDAV_USERNAME": settings.username,
                    "CALDAV_PASSWORD": settings.password,
                },
            }
        }
    }


def create_mcp_config(settings: Settings, directory: Optional[Path] = None) -> Path:
    """Print the MCP client configuration and save it as mcp_config.json."""
    print_step(5, "MCP Client Configuration")

    config_text = json.dumps(build_mcp_config(settings), indent=2)

    print("Add this to your MCP client configuration:\n")
    print("Examples:")
    print("  Claude Desktop (macOS): ~/Library/Application Support/Claude/claude_desktop_config.json")
    print("  Claude Desktop (Windows): %APPDATA%\\Claude\\claude_desktop_config.json")
    print("  Continue.dev: ~/.continue/config.json")
    print("  Generic MCP client: Check your client's documentation\n")
    print(config_text)

    config_file = (directory or Path.cwd()) / "mcp_config.json"
    with open(config_file, "w") as f:
        f.write(config_text)

    print(f"\nConfiguration saved to: {config_file}")
    print("Copy this into your MCP client config file.")
    return config_file


def run_setup(settings: Settings) -> int:
    """Main setup flow."""
    print_header("CalDAV MCP Server - Setup")

    if not check_dependencies():
        print("\nSetup aborted. Please install dependencies and try again.")
        return 1

    if not check_environment(settings):
        print("\nSetup aborted. Please configure the CalDAV settings and try again.")
        return 1

    calendars = test_connection(settings)
    if not calendars:
        print("\nSetup aborted. Please fix connection issues and try again.")
        return 1

    show_calendars(calendars)
    create_mcp_config(settings)

    print_header("Setup Complete!")
    print("Next steps:")
    print("  1. Add the configuration to your MCP client config file")
    print("  2. Restart your MCP client")
    print("  3. Test: Ask your LLM to 'list my calendars'")
    print("\nTo run the server manually for testing:")
    print("  caldav-mcp")
    print("  caldav-mcp --transport http --port 3000")
    print("\n" + "=" * 70 + "\n")

    return 0


def main() -> int:
    try:
        return run_setup(load_settings())
    except KeyboardInterrupt:
        print("\n\nSetup cancelled by user.")
        return 1


if __name__ == "__main__":
    sys.exit(main())
