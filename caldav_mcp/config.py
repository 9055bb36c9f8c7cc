"""Environment configuration for the CalDAV MCP server."""

import os
from typing import Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from .errors import ConfigurationError

_TRUE_VALUES = ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Server settings, normally read from the environment."""

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    base_url: Optional[str] = Field(default=None, description="CalDAV base URL")
    username: str = Field(default="", description="Basic auth user name")
    password: str = Field(default="", description="Basic auth password", repr=False)
    server_side_filter: bool = Field(
        default=True,
        description="Ask the server for a time-range query with recurrence expansion",
    )
    log_level: str = "INFO"
    http_host: str = "127.0.0.1"
    http_port: int = Field(default=3000, ge=1, le=65535)
    http_path: str = "/mcp"
    json_response: bool = True

    def require_base_url(self) -> str:
        """Return the base URL.

        Raises:
            ConfigurationError: If CALDAV_BASE_URL is not set
        """
        if not self.base_url:
            raise ConfigurationError("CALDAV_BASE_URL environment variable is required")
        return self.base_url


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in _TRUE_VALUES


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from ``environ`` (defaults to os.environ plus .env)."""
    if environ is None:
        # Load environment variables from .env file (if it exists)
        load_dotenv()
        environ = os.environ

    return Settings(
        base_url=environ.get("CALDAV_BASE_URL") or None,
        username=environ.get("CALDAV_USERNAME", ""),
        password=environ.get("CALDAV_PASSWORD", ""),
        server_side_filter=_flag(environ.get("CALDAV_SERVER_SIDE_FILTER"), True),
        log_level=environ.get("CALDAV_MCP_LOG_LEVEL", "INFO").upper(),
        http_host=environ.get("CALDAV_MCP_HOST", "127.0.0.1"),
        http_port=int(environ.get("CALDAV_MCP_PORT", "3000")),
        http_path=environ.get("CALDAV_MCP_PATH", "/mcp"),
        json_response=_flag(environ.get("CALDAV_MCP_JSON_RESPONSE"), True),
    )
