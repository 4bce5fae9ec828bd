"""MCP server wiring: one lowlevel Server per session, mounted on /mcp."""

import json
import logging
from typing import Any, Dict, List

from mcp import types
from mcp.server.lowlevel import Server
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import Message, Receive, Scope, Send

from .. import __version__
from ..errors import InvalidSessionError, ToolError
from ..tools import ToolContext, ToolRegistry
from .sessions import SESSION_HEADER, Session, SessionStore

logger = logging.getLogger(__name__)

SERVER_NAME = "tweetops"

BAD_SESSION_ERROR: Dict[str, Any] = {
    "jsonrpc": "2.0",
    "error": {
        "code": -32000,
        "message": "Bad Request: No valid session ID provided",
    },
    "id": None,
}


def is_initialize_request(body: bytes) -> bool:
    try:
        message = json.loads(body)
    except ValueError:
        return False
    return (
        isinstance(message, dict)
        and message.get("jsonrpc") == "2.0"
        and message.get("method") == "initialize"
        and "id" in message
    )


def build_mcp_server(registry: ToolRegistry, session: Session) -> Server:
    """Create the MCP server answering one session from the tool registry."""
    server: Server = Server(SERVER_NAME, version=__version__)

    @server.list_tools()
    async def list_tools() -> List[types.Tool]:
        return [
            types.Tool(name=d.name, description=d.description, inputSchema=d.input_schema)
            for d in registry.list()
        ]

    # Arguments are checked by the registry's pydantic models, which name the bad field.
    @server.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: Dict[str, Any]) -> List[Any]:
        session.attach(server.request_context.session)
        context = ToolContext(session_id=session.session_id, notify=session.notify)
        try:
            result = await registry.invoke(name, arguments, context)
        except ToolError as e:
            # Raised errors come back to the client as an isError result.
            logger.warning("Tool %s failed on session %s: %s", name, session.session_id, e)
            raise
        return list(result.content)

    @server.set_logging_level()
    async def set_logging_level(level: types.LoggingLevel) -> None:
        session.attach(server.request_context.session)
        session.log_level = level
        logger.info("Session %s log level set to %s", session.session_id, level)

    return server


def _replay(body: bytes, receive: Receive) -> Receive:
    """Receive callable yielding an already-read body once, then the original stream."""
    sent = False

    async def replay() -> Message:
        nonlocal sent
        if not sent:
            sent = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return replay


class McpEndpoint:
    """ASGI app for /mcp: session lookup, then the session's transport.

    An `initialize` POST without an `mcp-session-id` header opens a new
    session; every other request must carry the id of a live session or is
    answered with BAD_SESSION_ERROR and status 400.
    """

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        sessions: SessionStore = request.app.state.sessions
        session_id = request.headers.get(SESSION_HEADER)

        is_init = False
        if request.method == "POST":
            body = await request.body()
            is_init = is_initialize_request(body)
            receive = _replay(body, receive)

        try:
            session = await sessions.obtain(session_id, is_init)
        except InvalidSessionError as e:
            logger.info("Rejected %s: %s", request.method, e)
            await JSONResponse(BAD_SESSION_ERROR, status_code=400)(scope, receive, send)
            return

        if session_id:
            await session.handle_request(scope, receive, send)
            return

        status: List[int] = []

        async def send_recording(message: Message) -> None:
            if message["type"] == "http.response.start":
                status.append(message["status"])
            await send(message)

        await session.handle_request(scope, receive, send_recording)
        if not status or status[0] >= 400:
            logger.warning("Initialization failed; discarding session %s", session.session_id)
            await sessions.close(session.session_id)
