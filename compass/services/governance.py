"""Resource governance analyzer — naming, tagging and dependency analysis."""

from __future__ import annotations

import asyncio

import structlog

from compass.schemas.assessment import AssessmentCategory, AssessmentType
from compass.schemas.findings import CategoryResult
from compass.services.analysis import AnalysisInputs, fetch_inventory, new_result, raise_if_cancelled
from compass.services.categories import runs
from compass.services.collector import RateLimitedCollector
from compass.services.credentials import AccessMode
from compass.services.dependencies import analyze_dependencies
from compass.services.naming import analyze_naming
from compass.services.scoring import (
    GOVERNANCE_FULL_WEIGHTS,
    NAMING_PROFILE,
    PERFECT_SCORE,
    TAGGING_PREFERENCE_PROFILE,
    TAGGING_PROFILE,
    ScoringEngine,
)
from compass.services.sources import ResourceCatalogSource
from compass.services.tagging import analyze_tagging

logger = structlog.get_logger()


class GovernanceAnalyzer:
    """Scores naming and tagging hygiene of an environment's inventory."""

    category = AssessmentCategory.RESOURCE_GOVERNANCE

    def __init__(
        self,
        catalog: ResourceCatalogSource,
        collector: RateLimitedCollector,
        engine: ScoringEngine | None = None,
    ) -> None:
        self._catalog = catalog
        self._collector = collector
        self._engine = engine or ScoringEngine()

    async def analyze(
        self,
        inputs: AnalysisInputs,
        mode: AccessMode,
        cancel: asyncio.Event | None = None,
    ) -> CategoryResult:
        log = logger.bind(assessment_id=inputs.assessment_id, assessment_type=inputs.assessment_type.value)
        result = new_result(inputs, mode)

        resources = await fetch_inventory(self._collector, self._catalog, inputs, mode)
        result.details["resource_count"] = len(resources)
        if not resources:
            log.info("governance_no_resources")
            result.score = PERFECT_SCORE
            return result

        preferences = inputs.preferences
        scores: dict[str, float] = {}

        if runs(inputs.assessment_type, AssessmentType.NAMING_CONVENTION):
            raise_if_cancelled(cancel)
            findings, counters, details = analyze_naming(resources, preferences)
            result.findings.extend(findings)
            result.counters.update(counters)
            result.details["naming"] = details
            breakdown = self._engine.breakdown(result, NAMING_PROFILE)
            scores["naming"] = breakdown.score
            result.sub_scores.update({f"naming.{k}": v for k, v in breakdown.sub_scores.items()})
            log.info("naming_analysis_completed", findings=len(findings), score=breakdown.score)

        if runs(inputs.assessment_type, AssessmentType.TAGGING):
            raise_if_cancelled(cancel)
            findings, counters, details = analyze_tagging(resources, preferences)
            result.findings.extend(findings)
            result.counters.update(counters)
            result.details["tagging"] = details
            profile = TAGGING_PREFERENCE_PROFILE if details["uses_client_preferences"] else TAGGING_PROFILE
            breakdown = self._engine.breakdown(result, profile)
            scores["tagging"] = breakdown.score
            result.sub_scores.update({f"tagging.{k}": v for k, v in breakdown.sub_scores.items()})
            log.info("tagging_analysis_completed", findings=len(findings), score=breakdown.score)

        raise_if_cancelled(cancel)
        descriptive, dependency_details = analyze_dependencies(resources)
        result.descriptive_findings.extend(descriptive)
        result.details["dependencies"] = dependency_details

        result.score = self._engine.combine(scores, GOVERNANCE_FULL_WEIGHTS)
        return result
