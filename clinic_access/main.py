"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from clinic_access.api.error_handlers import register_exception_handlers
from clinic_access.api.routers import get_api_router
from clinic_access.core.config import AppSettings, get_settings
from clinic_access.core.logging import configure_logging
from clinic_access.engine import build_engine


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: D401
    """Build the engine on startup; flush the audit buffer on shutdown."""

    engine = build_engine(app.state.settings)
    engine.start()
    app.state.engine = engine
    try:
        yield
    finally:
        engine.shutdown()


def create_app(settings: AppSettings | None = None) -> FastAPI:
    """Application factory."""

    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title="Clinic Access Control Core",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    register_exception_handlers(app)
    app.include_router(get_api_router())
    return app
