"""Assessment API endpoints — submit, inspect, recover."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request, status

from compass.errors import InvalidAssessmentRequest
from compass.schemas.assessment import (
    AssessmentRequest,
    AssessmentResult,
    AssessmentStartResponse,
    AssessmentType,
    AssessmentTypeInfo,
    SweepResponse,
)
from compass.services.categories import get_category, get_description, get_sub_analyses

router = APIRouter(prefix="/assessments", tags=["assessments"])


@router.post("", response_model=AssessmentStartResponse, status_code=status.HTTP_202_ACCEPTED)
async def start_assessment(body: AssessmentRequest, request: Request) -> AssessmentStartResponse:
    """Accept an assessment and process it in the background."""
    lifecycle = request.app.state.services.lifecycle
    try:
        record = await lifecycle.start(body)
    except InvalidAssessmentRequest as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return AssessmentStartResponse(assessment_id=record.id, status=record.status, category=record.category)


@router.get("/types", response_model=list[AssessmentTypeInfo])
async def list_assessment_types() -> list[AssessmentTypeInfo]:
    """Catalog of every assessment type and the category that handles it."""
    return [
        AssessmentTypeInfo(
            type=t,
            category=get_category(t),
            description=get_description(t),
            sub_analyses=list(get_sub_analyses(t)),
        )
        for t in AssessmentType
    ]


@router.post("/sweep", response_model=SweepResponse)
async def sweep_pending(request: Request) -> SweepResponse:
    """Resubmit assessments left in Pending, e.g. after a restart."""
    lifecycle = request.app.state.services.lifecycle
    return SweepResponse(resubmitted=await lifecycle.sweep_pending())


@router.get("/{assessment_id}", response_model=AssessmentResult)
async def get_assessment(assessment_id: str, request: Request) -> AssessmentResult:
    """Current state of an assessment, with findings once it has completed."""
    result = await request.app.state.services.lifecycle.get_result(assessment_id)
    if result is None:
        raise HTTPException(status_code=404, detail=f"Assessment '{assessment_id}' not found")
    return result
