import asyncio
import logging
import threading
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Set

import anyio
from anyio.abc import TaskGroup, TaskStatus
from mcp import types
from mcp.server.lowlevel import Server
from mcp.server.session import ServerSession
from mcp.server.streamable_http import MCP_SESSION_ID_HEADER, StreamableHTTPServerTransport
from starlette.types import Receive, Scope, Send

from ..errors import InvalidSessionError

logger = logging.getLogger(__name__)

SESSION_HEADER = MCP_SESSION_ID_HEADER

# Severity order of MCP logging levels, lowest first.
LOG_LEVELS = ("debug", "info", "notice", "warning", "error", "critical", "alert", "emergency")


class Session:
    """Server-side handle binding one client connection to its MCP transport.

    The session owns a streamable-HTTP transport and the MCP server task
    reading from it. Messages reach the server through the transport's single
    read stream, in the order the transport delivers them. Closing the
    session terminates the transport and runs the close hooks.
    """

    def __init__(self, session_id: str, json_response: bool = True) -> None:
        self.session_id = session_id
        self.transport = StreamableHTTPServerTransport(
            mcp_session_id=session_id,
            is_json_response_enabled=json_response,
        )
        self.created_at = time.monotonic()
        self.last_seen = self.created_at
        self.log_level: types.LoggingLevel | None = None
        self._peer: ServerSession | None = None
        self._streams = 0
        self._closed = False
        self._close_hooks: List[Callable[[], None]] = []
        self._sends: Set[asyncio.Task[None]] = set()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def streaming(self) -> bool:
        """Whether a GET notification stream is being served."""
        return self._streams > 0

    def touch(self) -> None:
        self.last_seen = time.monotonic()

    def on_close(self, hook: Callable[[], None]) -> None:
        self._close_hooks.append(hook)

    def attach(self, peer: ServerSession) -> None:
        """Remember the MCP server session used for server-initiated messages."""
        self._peer = peer

    async def run(
        self,
        server: Server,
        *,
        task_status: TaskStatus[None] = anyio.TASK_STATUS_IGNORED,
    ) -> None:
        """Serve MCP on this session's transport until it is terminated."""
        async with self.transport.connect() as (read_stream, write_stream):
            task_status.started()
            try:
                await server.run(
                    read_stream,
                    write_stream,
                    server.create_initialization_options(),
                    stateless=False,
                )
            except Exception:
                logger.exception("Session %s crashed", self.session_id)
            finally:
                await self.close()

    async def handle_request(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Hand one HTTP request for this session to its transport."""
        stream = scope["method"] == "GET"
        if stream:
            self._streams += 1
        self.touch()
        try:
            await self.transport.handle_request(scope, receive, send)
        finally:
            if stream:
                self._streams -= 1
            self.touch()
        if self.transport.is_terminated:
            await self.close()

    def notify(self, level: types.LoggingLevel, data: Any, logger_name: str | None = None) -> bool:
        """Send an MCP log notification to the client's GET stream.

        Returns False without sending when the session is closed, has not
        served a request yet, or the client asked for a higher minimum level.
        The transport drops the message when no GET stream is open.
        """
        peer = self._peer
        if self._closed or peer is None:
            logger.debug("Dropping notification for session %s", self.session_id)
            return False
        if self.log_level is not None and LOG_LEVELS.index(level) < LOG_LEVELS.index(self.log_level):
            return False
        task = asyncio.get_running_loop().create_task(self._send_log(peer, level, data, logger_name))
        self._sends.add(task)
        task.add_done_callback(self._sends.discard)
        return True

    async def _send_log(
        self,
        peer: ServerSession,
        level: types.LoggingLevel,
        data: Any,
        logger_name: str | None,
    ) -> None:
        try:
            await peer.send_log_message(level=level, data=data, logger=logger_name)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            logger.debug("Session %s closed before a notification was sent", self.session_id)

    async def close(self) -> None:
        """Terminate the transport and run close hooks. Idempotent."""
        if self._closed:
            return
        self._closed = True
        with anyio.CancelScope(shield=True):
            await self.transport.terminate()
        for hook in self._close_hooks:
            hook()
        logger.info("Session %s closed", self.session_id)


class SessionStore:
    """Mapping from session id to live Session.

    Inserts and deletes happen under a lock so they are atomic with respect
    to lookups from concurrent connections. Each new session gets its own MCP
    server from server_factory, run in the store's task group; enter `run()`
    before creating sessions.
    """

    def __init__(
        self,
        server_factory: Callable[[Session], Server],
        id_factory: Callable[[], str] | None = None,
        json_response: bool = True,
    ) -> None:
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()
        self._server_factory = server_factory
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._json_response = json_response
        self._task_group: TaskGroup | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    @asynccontextmanager
    async def run(self) -> AsyncIterator["SessionStore"]:
        """Own the task group running every session's server; close all on exit."""
        async with anyio.create_task_group() as tg:
            self._task_group = tg
            try:
                yield self
            finally:
                await self.close_all()
                tg.cancel_scope.cancel()
                self._task_group = None

    def get(self, session_id: str | None) -> Session | None:
        if not session_id:
            return None
        with self._lock:
            return self._sessions.get(session_id)

    async def obtain(self, session_id: str | None, is_init_request: bool) -> Session:
        """Return the live session for session_id, or create one on initialize.

        Raises:
            InvalidSessionError: session_id is unknown, or absent on a
                non-initialization request.
        """
        if session_id:
            session = self.get(session_id)
            if session is None:
                raise InvalidSessionError(f"Unknown session id: {session_id}")
            return session

        if not is_init_request:
            raise InvalidSessionError("Missing session id on non-initialization request")
        if self._task_group is None:
            raise RuntimeError("SessionStore is not running; enter 'async with store.run()' first")

        with self._lock:
            new_id = self._id_factory()
            while new_id in self._sessions:
                new_id = self._id_factory()
            session = Session(new_id, json_response=self._json_response)
            self._sessions[new_id] = session
        session.on_close(lambda: self._discard(new_id))
        await self._task_group.start(session.run, self._server_factory(session))
        logger.info("Session %s created", new_id)
        return session

    async def close(self, session_id: str) -> None:
        """Close and forget a session. Unknown ids are a no-op."""
        session = self.get(session_id)
        if session is not None:
            await session.close()

    async def close_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
        for session in sessions:
            await session.close()

    async def reap_idle(self, max_idle_seconds: float, now: float | None = None) -> List[str]:
        """Close sessions idle longer than max_idle_seconds; return their ids.

        Sessions with an open notification stream are never considered idle.
        """
        now = time.monotonic() if now is None else now
        with self._lock:
            expired = [
                s
                for s in self._sessions.values()
                if not s.streaming and now - s.last_seen > max_idle_seconds
            ]
        for session in expired:
            await session.close()
        return [s.session_id for s in expired]

    def _discard(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)
