"""Compass — FastAPI application factory."""

from __future__ import annotations

from fastapi import FastAPI

from compass.config import Settings, get_settings
from compass.container import ServiceContainer, build_services
from compass.middleware import configure_cors, configure_rate_limiting, lifespan, logging_middleware
from compass.routers import assessments, costs, health


def create_app(settings: Settings | None = None, services: ServiceContainer | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = get_settings()
    if services is None:
        services = build_services(settings)

    app = FastAPI(
        title=settings.app_name,
        description="Cloud environment assessment orchestration and scoring",
        version=settings.app_version,
        lifespan=lifespan,
    )

    # Store settings and services on app state
    app.state.settings = settings
    app.state.services = services

    # Middleware
    configure_cors(app, settings)
    configure_rate_limiting(app, settings)
    app.middleware("http")(logging_middleware)

    # Routers
    app.include_router(health.router)
    app.include_router(assessments.router, prefix=settings.api_prefix)
    app.include_router(costs.router, prefix=settings.api_prefix)

    return app


# Default app instance for uvicorn
app = create_app()
