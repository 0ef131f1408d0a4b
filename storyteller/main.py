"""
FastAPI application entrypoint for StoryTeller.

Uvicorn should point at `storyteller.main:app`, or run `storyteller` /
`python -m storyteller.main` to serve on the configured port.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from storyteller.api import health, metrics, session
from storyteller.core.config import Settings, get_settings
from storyteller.core.error_handlers import add_exception_handlers
from storyteller.core.logging import configure_logging, get_logger
from storyteller.core.middleware import RequestIDMiddleware
from storyteller.services.session_gateway import SessionBackendGateway

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    gateway: Optional[SessionBackendGateway] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    gateway = gateway or SessionBackendGateway(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "application_startup",
            app_name=settings.app_name,
            version=settings.app_version,
            port=settings.port,
            public_assistant_configured=bool(settings.assistant_id),
            api_key_configured=bool(settings.upliftai_api_key),
        )
        yield
        await gateway.aclose()
        logger.info("application_shutdown")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.gateway = gateway

    app.state.limiter = session.limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    add_exception_handlers(app)

    app.add_middleware(RequestIDMiddleware)

    app.include_router(health.router, tags=["health"])
    app.include_router(metrics.router)
    app.include_router(session.router)

    # Browser client assets; mounted last so API routes take precedence
    static_dir = Path(settings.static_dir)
    if static_dir.is_dir():
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="static")

    return app


def run() -> None:
    """Serve the application with uvicorn on the configured host and port."""
    settings = get_settings()
    configure_logging(debug=settings.debug, session_log_level=settings.session_log_level)
    uvicorn.run(
        "storyteller.main:app",
        host=settings.host,
        port=settings.port,
        log_level="debug" if settings.debug else "info",
    )


app = create_app()


if __name__ == "__main__":
    run()
