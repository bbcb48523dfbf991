"""FastAPI application factory.

Lifespan
--------
On startup the app builds one :class:`~skiptrace.service.TraceService`
(local SQLite cache, quota ledger, optional remote store) shared across all
requests via ``request.app.state.service``.  On shutdown the cache
connection is closed.

Routers
-------
    /sessions  sessions, nodes, entities, counts and lookups
    /usage     daily quota state
    /auth      identity changes and stranded-session resolution
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from skiptrace import __version__
from skiptrace.config import configure_logging
from skiptrace.db import get_connection, init_db
from skiptrace.service import TraceService

from skiptrace.api.routers import auth as auth_router
from skiptrace.api.routers import sessions as sessions_router
from skiptrace.api.routers import usage as usage_router


def create_app(service: Optional[TraceService] = None) -> FastAPI:
    """Return a fully-configured FastAPI application instance.

    Pass *service* to run the app on pre-built collaborators (tests do this
    with an in-memory cache); otherwise one is built from ``settings``.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if service is not None:
            app.state.service = service
            yield
            return
        conn = get_connection()
        init_db(conn)
        app.state.service = TraceService.from_settings(conn)
        try:
            yield
        finally:
            conn.close()

    configure_logging()
    app = FastAPI(
        title="Skip-Trace Session API",
        description=(
            "Session entity graph over skip-trace and property lookups, "
            "with a daily request-credit budget per caller class."
        ),
        version=__version__,
        lifespan=lifespan,
    )

    # Allow browser frontends on any origin (tighten for production).
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(sessions_router.router, prefix="/sessions", tags=["sessions"])
    app.include_router(usage_router.router, prefix="/usage", tags=["usage"])
    app.include_router(auth_router.router, prefix="/auth", tags=["auth"])

    return app


# Module-level instance used by uvicorn:
#   uvicorn skiptrace.api.app:app --reload
app = create_app()
