"""Schemas for health check endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ComponentHealth(BaseModel):
    """Health of one component the pipeline depends on."""

    component: str
    status: str
    latency_ms: float | None = None
    details: str | None = None


class PipelineLoad(BaseModel):
    """Work currently held by the process."""

    active_assessments: int = 0
    collector_in_flight: int = 0
    collector_calls_started: int = 0


class HealthResponse(BaseModel):
    status: str
    version: str
    environment: str
    components: list[ComponentHealth]
    load: PipelineLoad = Field(default_factory=PipelineLoad)
