"""
storefront.api.app

FastAPI app factory for the storefront core.

Responsibilities:
- Build the FastAPI application and register routers/middleware/error handlers.
- Initialize and dispose shared infrastructure (DB engine/session factory) in the lifespan.
- Provide a single composition root where cross-cutting concerns live.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from storefront import __version__
from storefront.api.envelope import install_error_handlers
from storefront.api.routers.agents import router as agents_router
from storefront.api.routers.auth import router as auth_router
from storefront.api.routers.health import router as health_router
from storefront.api.routers.orders import router as orders_router
from storefront.api.routers.tickets import router as tickets_router
from storefront.api.routers.users import router as users_router
from storefront.db.session import create_engine, create_sessionmaker, init_db
from storefront.observability.logging import configure_logging, get_logger
from storefront.observability.middleware import RequestContextMiddleware
from storefront.settings import Settings, get_settings

log = get_logger(__name__)


def create_app(*, settings: Settings) -> FastAPI:
    # Configure structured logging once at process startup (before app serves requests).
    configure_logging(
        service_name=settings.service_name,
        level=settings.log_level,
        json_logs=settings.env != "dev",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        log.info("startup", env=settings.env)
        # One engine + session factory per process; requests get sessions via `api.deps`.
        engine = create_engine(settings)
        app.state.engine = engine
        app.state.sessionmaker = create_sessionmaker(engine)
        if settings.env in ("dev", "test"):
            # Prod runs Alembic migrations instead.
            await init_db(engine)
        try:
            yield
        finally:
            await engine.dispose()
            log.info("shutdown")

    app = FastAPI(
        title="Storefront Core",
        version=__version__,
        docs_url="/docs",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    # Every dependency that reads settings sees the instance this app was built with.
    app.dependency_overrides[get_settings] = lambda: settings

    app.add_middleware(RequestContextMiddleware)
    install_error_handlers(app)

    app.include_router(health_router, tags=["health"])
    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(orders_router)
    app.include_router(agents_router)
    app.include_router(tickets_router)

    return app


# --- Module Notes -----------------------------------------------------------
# App composition stays here; authorization and workflow rules live in `lifecycle`
# and `services`.
