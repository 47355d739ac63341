"""Shared analyzer plumbing — inputs, the analyzer contract, inventory fetch."""

from __future__ import annotations

import asyncio
from typing import Protocol

import structlog
from pydantic import BaseModel, Field

from compass.errors import AnalysisCancelled
from compass.schemas.assessment import AssessmentCategory, AssessmentType
from compass.schemas.findings import CategoryResult
from compass.schemas.inventory import ClientPreferenceOverride, Environment, Resource, TenantContext
from compass.services.collector import RateLimitedCollector
from compass.services.credentials import AccessMode
from compass.services.sources import ResourceCatalogSource

logger = structlog.get_logger()


class AnalysisInputs(BaseModel):
    """Everything an analyzer needs about the assessment it is running for."""

    assessment_id: str
    assessment_type: AssessmentType
    category: AssessmentCategory
    environment: Environment
    tenant: TenantContext
    subscription_ids: list[str] = Field(default_factory=list)
    preferences: ClientPreferenceOverride | None = None


class CategoryAnalyzer(Protocol):
    category: AssessmentCategory

    async def analyze(
        self,
        inputs: AnalysisInputs,
        mode: AccessMode,
        cancel: asyncio.Event | None = None,
    ) -> CategoryResult: ...


def raise_if_cancelled(cancel: asyncio.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise AnalysisCancelled("Analysis cancelled")


async def fetch_inventory(
    collector: RateLimitedCollector,
    catalog: ResourceCatalogSource,
    inputs: AnalysisInputs,
    mode: AccessMode,
) -> list[Resource]:
    """Fetch the resource inventory, retrying once with default credentials.

    An enhanced-mode fetch that comes back empty is repeated in default mode,
    since a rejected delegated call surfaces from the collector as an empty
    result.
    """
    resources = await collector.fetch(
        "resource_catalog", catalog.fetch, inputs.subscription_ids, mode.value, inputs.tenant
    )
    if not resources and mode == AccessMode.ENHANCED:
        logger.warning(
            "inventory_enhanced_fetch_empty",
            assessment_id=inputs.assessment_id,
            fallback=AccessMode.DEFAULT.value,
        )
        resources = await collector.fetch(
            "resource_catalog",
            catalog.fetch,
            inputs.subscription_ids,
            AccessMode.DEFAULT.value,
            inputs.tenant,
        )
    return list(resources)


def new_result(inputs: AnalysisInputs, mode: AccessMode) -> CategoryResult:
    return CategoryResult(
        category=inputs.category.value,
        assessment_type=inputs.assessment_type.value,
        access_mode=mode.value,
    )
