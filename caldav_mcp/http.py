"""
Streamable HTTP transport with per-session MCP servers.

Every MCP session gets its own CalendarService and FastMCP server running on
a dedicated StreamableHTTPServerTransport. Requests are routed to the
transport of the session named in their ``mcp-session-id`` header; new
sessions are only created by an initialize request that carries no session
id.
"""

import json
import logging
from contextlib import asynccontextmanager
from functools import partial
from threading import Lock
from typing import Any, Callable, Dict, Optional
from uuid import uuid4

import anyio
from anyio.abc import TaskGroup
from mcp.server.streamable_http import MCP_SESSION_ID_HEADER, StreamableHTTPServerTransport
from mcp.types import InitializeRequestParams, JSONRPCRequest
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.types import Message, Receive, Scope, Send

from .config import Settings
from .service import CalendarService
from .tools import build_server, low_level_server

logger = logging.getLogger(__name__)

BAD_REQUEST_ERROR = {
    "jsonrpc": "2.0",
    "error": {
        "code": -32000,
        "message": "Bad Request: No valid session ID provided",
    },
    "id": None,
}

ServiceFactory = Callable[[], CalendarService]


class SessionRegistry:
    """Thread-safe mapping of session id to its live transport."""

    def __init__(self):
        self._transports: Dict[str, StreamableHTTPServerTransport] = {}
        self._lock = Lock()

    def get(self, session_id: str) -> Optional[StreamableHTTPServerTransport]:
        with self._lock:
            return self._transports.get(session_id)

    def register(self, session_id: str, transport: StreamableHTTPServerTransport) -> None:
        """Store a transport; a session id maps to at most one transport."""
        with self._lock:
            existing = self._transports.get(session_id)
            if existing is not None and existing is not transport:
                raise ValueError(f"Session {session_id} is already registered")
            self._transports[session_id] = transport

    def remove(self, session_id: str) -> Optional[StreamableHTTPServerTransport]:
        with self._lock:
            return self._transports.pop(session_id, None)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._transports

    def __len__(self) -> int:
        with self._lock:
            return len(self._transports)


def is_initialize_request(body: bytes) -> bool:
    """Return True if ``body`` is a single, well-formed MCP initialize request."""
    try:
        request = JSONRPCRequest.model_validate(json.loads(body))
    except ValueError:
        return False
    if request.method != "initialize":
        return False
    try:
        InitializeRequestParams.model_validate(request.params or {})
    except ValueError:
        return False
    return True


def _request_id(body: bytes) -> Any:
    try:
        message = json.loads(body)
    except ValueError:
        return None
    return message.get("id") if isinstance(message, dict) else None


def _replay_body(body: bytes, receive: Receive) -> Receive:
    """Return a receive callable that yields the already-read body first."""
    sent = False

    async def replay() -> Message:
        nonlocal sent
        if not sent:
            sent = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return replay


class SessionRouter:
    """ASGI app dispatching MCP requests to per-session transports.

    ``run()`` must be entered (normally as the application lifespan) before
    requests are served; it owns the task group the session servers run in.
    """

    def __init__(
        self,
        service_factory: ServiceFactory,
        registry: Optional[SessionRegistry] = None,
        json_response: bool = True,
    ):
        self.registry = registry if registry is not None else SessionRegistry()
        self._service_factory = service_factory
        self._json_response = json_response
        self._task_group: Optional[TaskGroup] = None

    @asynccontextmanager
    async def run(self):
        async with anyio.create_task_group() as task_group:
            self._task_group = task_group
            try:
                yield
            finally:
                task_group.cancel_scope.cancel()
                self._task_group = None

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if self._task_group is None:
            raise RuntimeError("SessionRouter.run() must be active to serve requests")

        request = Request(scope, receive)
        body = await request.body()
        session_id = request.headers.get(MCP_SESSION_ID_HEADER)

        transport = self.registry.get(session_id) if session_id else None
        if transport is None:
            if session_id or not is_initialize_request(body):
                logger.info(
                    "Rejected %s request (session id %r)", request.method, session_id
                )
                response = JSONResponse(BAD_REQUEST_ERROR, status_code=400)
                await response(scope, receive, send)
                return

            try:
                transport = await self._start_session()
            except Exception as e:
                logger.exception("Could not start MCP session")
                response = JSONResponse(
                    {
                        "jsonrpc": "2.0",
                        "error": {"code": -32603, "message": f"Internal error: {e}"},
                        "id": _request_id(body),
                    },
                    status_code=500,
                )
                await response(scope, receive, send)
                return

        await transport.handle_request(scope, _replay_body(body, receive), send)

    async def _start_session(self) -> StreamableHTTPServerTransport:
        service = self._service_factory()
        await service.initialize()
        server = low_level_server(build_server(service))

        transport = StreamableHTTPServerTransport(
            mcp_session_id=uuid4().hex,
            is_json_response_enabled=self._json_response,
        )
        session_id = transport.mcp_session_id

        async def run_server(*, task_status=anyio.TASK_STATUS_IGNORED):
            async with transport.connect() as streams:
                read_stream, write_stream = streams
                self.registry.register(session_id, transport)
                logger.info("MCP session %s started", session_id)
                task_status.started()
                try:
                    await server.run(
                        read_stream,
                        write_stream,
                        server.create_initialization_options(),
                        stateless=False,
                    )
                except Exception:
                    logger.exception("MCP session %s failed", session_id)
                finally:
                    self.registry.remove(session_id)
                    logger.info("MCP session %s closed", session_id)

        await self._task_group.start(run_server)
        return transport


def create_app(settings: Settings, service_factory: Optional[ServiceFactory] = None) -> Starlette:
    """Build the Starlette application serving MCP at ``settings.http_path``."""
    if service_factory is None:
        service_factory = partial(CalendarService, settings)

    router = SessionRouter(service_factory, json_response=settings.json_response)
    app = Starlette(
        routes=[Route(settings.http_path, endpoint=router)],
        lifespan=lambda app: router.run(),
    )
    app.state.router = router
    return app
