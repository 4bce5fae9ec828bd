import json
import logging
from contextlib import AsyncExitStack
from typing import Any, Dict, List, Sequence

import anyio
import httpx
from mcp import types
from mcp.client.session import ClientSession
from mcp.client.streamable_http import streamablehttp_client
from mcp.shared.exceptions import McpError

from ..errors import ServerConnectionError, ToolExecutionError
from ..models import ToolDescriptor

logger = logging.getLogger(__name__)

# Failures of the connection itself rather than of the request sent over it.
TRANSPORT_ERRORS = (
    httpx.HTTPError,
    anyio.ClosedResourceError,
    anyio.BrokenResourceError,
    anyio.EndOfStream,
    OSError,
)


def content_to_text(content: Sequence[Any]) -> str:
    """Flatten MCP result content: first text element, else the whole content as JSON."""
    if content:
        text = getattr(content[0], "text", None)
        if text:
            return text
    return json.dumps(
        [c.model_dump(mode="json", exclude_none=True) if hasattr(c, "model_dump") else c for c in content],
        indent=2,
        default=str,
    )


class ToolServerClient:
    """One MCP session against the TweetOps server over streamable HTTP."""

    def __init__(self, server_url: str) -> None:
        self.server_url = server_url
        self._exit_stack = AsyncExitStack()
        self._session: ClientSession | None = None

    @property
    def connected(self) -> bool:
        return self._session is not None

    async def connect(self) -> None:
        """Open the transport and run the MCP initialization handshake.

        Raises:
            ServerConnectionError: the server could not be reached or refused
                the session.
        """
        try:
            read, write, _ = await self._exit_stack.enter_async_context(
                streamablehttp_client(self.server_url)
            )
            session = await self._exit_stack.enter_async_context(ClientSession(read, write))
            await session.initialize()
        except Exception as e:
            await self.close()
            raise ServerConnectionError(f"Failed to connect to server: {e}") from e
        self._session = session
        logger.info("Connected to MCP server at %s", self.server_url)

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise ServerConnectionError("Not connected to the MCP server")
        return self._session

    async def list_tools(self) -> List[ToolDescriptor]:
        """Fetch the server's tool descriptors.

        Raises:
            ServerConnectionError: the server could not answer the listing.
        """
        try:
            result = await self._require_session().list_tools()
        except McpError as e:
            raise ServerConnectionError(f"Failed to list tools: {e.error.message}") from e
        except TRANSPORT_ERRORS as e:
            raise ServerConnectionError(f"Lost connection to server: {e}") from e
        return [
            ToolDescriptor(
                name=tool.name,
                description=tool.description or "",
                input_schema=tool.inputSchema or {},
            )
            for tool in result.tools
        ]

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> str:
        """Run a tool on the server and return its result as text.

        Raises:
            ToolExecutionError: the server reported an error for the call.
            ServerConnectionError: the connection to the server failed.
        """
        session = self._require_session()
        logger.info("Calling MCP tool %s", name)
        try:
            result: types.CallToolResult = await session.call_tool(name, arguments)
        except McpError as e:
            if e.error.code == types.CONNECTION_CLOSED:
                raise ServerConnectionError(f"Lost connection to server: {e.error.message}") from e
            raise ToolExecutionError(e.error.message) from e
        except TRANSPORT_ERRORS as e:
            logger.error("Transport failure calling %s: %s", name, e)
            raise ServerConnectionError(f"Lost connection to server: {e}") from e
        text = content_to_text(result.content)
        if result.isError:
            raise ToolExecutionError(text)
        return text

    async def close(self) -> None:
        """Terminate the session and close the transport. Idempotent."""
        self._session = None
        try:
            await self._exit_stack.aclose()
        except Exception as e:
            logger.error("Error during cleanup: %s", e)
        finally:
            self._exit_stack = AsyncExitStack()
