"""Cost trend API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from compass.errors import EnvironmentNotFoundError
from compass.schemas.costs import CostTrendRequest, CostTrendResponse

router = APIRouter(prefix="/costs", tags=["costs"])


@router.post("/trends", response_model=CostTrendResponse)
async def cost_trends(body: CostTrendRequest, request: Request) -> CostTrendResponse:
    """Compare an environment's spend over two consecutive periods."""
    try:
        return await request.app.state.services.cost_trends.analyze(body)
    except EnvironmentNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
