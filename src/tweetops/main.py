import asyncio
import logging
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import uvicorn
from fastapi import FastAPI

from . import __version__
from .services.mcp_server import McpEndpoint, build_mcp_server
from .services.sessions import SessionStore
from .services.twitter import TweetScheduler, TwitterService
from .settings import get_settings
from .tools import ToolRegistry, build_registry


def setup_server_logging() -> logging.Logger:
    """Configure and return the server logger."""
    logs_dir = Path("logs")
    logs_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("tweetops")
    if logger.handlers:
        return logging.getLogger("tweetops.server")

    logger.setLevel(get_settings().log_level)
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")

    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    fh = RotatingFileHandler(logs_dir / "server.log", maxBytes=5_000_000, backupCount=3)
    fh.setFormatter(fmt)
    logger.addHandler(fh)

    return logging.getLogger("tweetops.server")


LOGGER = setup_server_logging()


async def _reap_idle_sessions(store: SessionStore, max_idle: float, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        expired = await store.reap_idle(max_idle)
        if expired:
            LOGGER.info("Reaped %d idle session(s)", len(expired))


def create_app(
    registry: ToolRegistry | None = None,
    twitter: TwitterService | None = None,
) -> FastAPI:
    """Build the MCP tool server.

    Args:
        registry: Tool registry to serve. Built from Twitter settings when omitted.
        twitter: Twitter backend used to build the default registry.
    """
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Build the tool registry and session store; close everything on shutdown."""
        scheduler: TweetScheduler | None = None
        tools = registry
        if tools is None:
            # Raises ConfigurationError, aborting startup, when credentials are missing.
            backend = twitter or TwitterService.from_settings(settings)
            scheduler = TweetScheduler(backend)
            tools = build_registry(backend, scheduler)

        sessions = SessionStore(lambda session: build_mcp_server(tools, session))
        app.state.sessions = sessions
        LOGGER.info("Serving %d tools: %s", len(tools), [d.name for d in tools.list()])

        async with sessions.run():
            reaper = asyncio.create_task(
                _reap_idle_sessions(
                    sessions,
                    settings.session_idle_timeout_seconds,
                    settings.session_reap_interval_seconds,
                )
            )

            yield

            LOGGER.info("Shutting down...")
            reaper.cancel()
            try:
                await reaper
            except asyncio.CancelledError:
                pass
            if scheduler is not None:
                await scheduler.shutdown()

    app = FastAPI(
        title="TweetOps MCP Server",
        version=__version__,
        debug=settings.debug,
        lifespan=lifespan,
    )

    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Health check for load balancers and monitoring."""
        return {"status": "ok", "sessions": len(app.state.sessions)}

    # POST for client messages, GET for the notification stream, DELETE to end a session.
    app.router.add_route(
        "/mcp",
        McpEndpoint(),
        methods=["GET", "POST", "DELETE"],
        include_in_schema=False,
    )

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    settings = get_settings()
    LOGGER.info("Server is running on http://%s:%s/mcp", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
