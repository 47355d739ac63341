"""Health check endpoints for production monitoring."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable

from fastapi import APIRouter, Request

from compass.schemas.health import ComponentHealth, HealthResponse, PipelineLoad

router = APIRouter(tags=["health"])


async def _probe(component: str, check: Callable[[], Awaitable[str | None]]) -> ComponentHealth:
    """Time ``check``; it returns optional details and raises when unhealthy."""
    start = time.monotonic()
    try:
        details = await check()
        status = "healthy"
    except Exception as exc:
        details = str(exc)[:200]
        status = "unhealthy"
    return ComponentHealth(
        component=component,
        status=status,
        latency_ms=round((time.monotonic() - start) * 1000, 2),
        details=details,
    )


def _load(request: Request) -> PipelineLoad:
    services = request.app.state.services
    return PipelineLoad(
        active_assessments=services.lifecycle.supervisor.active,
        collector_in_flight=services.collector.in_flight,
        collector_calls_started=services.collector.calls_started,
    )


def _response(request: Request, status: str, components: list[ComponentHealth]) -> HealthResponse:
    settings = request.app.state.settings
    return HealthResponse(
        status=status,
        version=settings.app_version,
        environment=settings.environment,
        components=components,
        load=_load(request),
    )


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Basic health check — is the application running, and how busy is it?"""
    return _response(request, "healthy", [ComponentHealth(component="app", status="healthy", latency_ms=0.0)])


@router.get("/health/ready", response_model=HealthResponse)
async def readiness_check(request: Request) -> HealthResponse:
    """Readiness check — is the store reachable and the pending sweep alive?"""
    lifecycle = request.app.state.services.lifecycle

    async def _check_store() -> str:
        return f"{await lifecycle.count_pending()} pending"

    async def _check_sweeper() -> None:
        sweeper = getattr(request.app.state, "sweeper", None)
        if sweeper is None or sweeper.done():
            raise RuntimeError("pending sweep is not running")

    components = [await _probe("store", _check_store), await _probe("sweeper", _check_sweeper)]
    overall = "healthy" if all(c.status == "healthy" for c in components) else "unhealthy"
    return _response(request, overall, components)


@router.get("/health/live")
async def liveness_check() -> dict[str, str]:
    """Liveness probe — is the process alive?"""
    return {"status": "alive"}
