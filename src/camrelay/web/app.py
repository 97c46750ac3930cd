"""FastAPI application factory for the camera relay."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from camrelay import __version__
from camrelay.capture.base import Spawner
from camrelay.capture.process import ProcessSpawner
from camrelay.capture.profiles import load_profiles
from camrelay.config import RelayConfig
from camrelay.errors import CaptureUnavailable, SpawnError
from camrelay.session.manager import StreamSessionManager
from camrelay.snapshot.controller import SnapshotController
from camrelay.trace import EventTracer
from camrelay.web.middleware import (
    DEFAULT_HEADERS,
    RequestContextMiddleware,
    request_id,
)

logger = logging.getLogger(__name__)


def create_app(
    config: RelayConfig | None = None,
    spawner: Spawner | None = None,
) -> FastAPI:
    """Build and return the FastAPI application."""
    config = config or RelayConfig.load()
    tracer = EventTracer(config.trace)
    if spawner is None:
        spawner = ProcessSpawner(
            load_profiles(config.profiles_path),
            chunk_size=config.chunk_size,
            tracer=tracer,
        )

    # Only the relay endpoints are routable; no docs or schema pages
    app = FastAPI(
        title="camrelay",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=_lifespan,
    )

    app.state.config = config
    app.state.tracer = tracer
    app.state.spawner = spawner
    app.state.sessions = StreamSessionManager(
        spawner,
        sink_buffer_bytes=config.sink_buffer_bytes,
        stop_timeout=config.stop_timeout,
        tracer=tracer,
    )
    app.state.snapshots = SnapshotController(spawner, tracer=tracer)

    from camrelay.web.api.status import router as status_router
    from camrelay.web.api.still import router as still_router
    from camrelay.web.api.stream import router as stream_router

    app.include_router(stream_router)
    app.include_router(still_router)
    app.include_router(status_router)

    app.add_middleware(RequestContextMiddleware, tracer=tracer)
    _register_error_handlers(app)

    return app


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    await app.state.sessions.shutdown()


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        # Unknown paths and methods get a bare status, no body
        return Response(status_code=exc.status_code, headers=exc.headers)

    @app.exception_handler(CaptureUnavailable)
    async def capture_unavailable(request: Request, exc: CaptureUnavailable):
        logger.error("%s> stream unavailable: %s", request_id(request), exc)
        return PlainTextResponse(str(exc), status_code=exc.status_code)

    @app.exception_handler(SpawnError)
    async def spawn_failed(request: Request, exc: SpawnError):
        logger.error("%s> capture failed to start: %s", request_id(request), exc)
        return PlainTextResponse(str(exc), status_code=500)

    @app.exception_handler(Exception)
    async def unhandled(request: Request, exc: Exception):
        logger.exception("exception> %s", request_id(request))
        # Sent from outside the middleware stack, so the defaults are added here
        return PlainTextResponse(str(exc), status_code=500, headers=DEFAULT_HEADERS)
