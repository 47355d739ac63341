"""Category dispatch — routes an assessment to exactly one analyzer."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

import structlog

from compass.errors import CategoryMismatchError, UnsupportedCategoryError
from compass.schemas.assessment import AssessmentCategory
from compass.schemas.findings import CategoryResult
from compass.services.analysis import AnalysisInputs, CategoryAnalyzer
from compass.services.categories import get_category
from compass.services.credentials import CredentialResolver

logger = structlog.get_logger()


class CategoryDispatcher:
    """Invokes the single analyzer registered for an assessment's category.

    A governance run never reaches the identity, continuity or security
    analyzers and vice versa. Client preferences are only passed to the
    governance analyzer.
    """

    def __init__(self, analyzers: Iterable[CategoryAnalyzer], credentials: CredentialResolver) -> None:
        self._analyzers: dict[AssessmentCategory, CategoryAnalyzer] = {}
        for analyzer in analyzers:
            if analyzer.category in self._analyzers:
                raise ValueError(f"Duplicate analyzer for category {analyzer.category.value}")
            self._analyzers[analyzer.category] = analyzer
        self._credentials = credentials

    @property
    def categories(self) -> list[AssessmentCategory]:
        return list(self._analyzers)

    async def dispatch(
        self,
        category: AssessmentCategory,
        inputs: AnalysisInputs,
        cancel: asyncio.Event | None = None,
    ) -> CategoryResult:
        """Run the analyzer for ``category``.

        Raises:
            CategoryMismatchError: If the assessment type belongs elsewhere.
            UnsupportedCategoryError: If no analyzer handles the category.
        """
        expected = get_category(inputs.assessment_type)
        if expected != category:
            raise CategoryMismatchError(
                f"{inputs.assessment_type.value} belongs to {expected.value}, not {category.value}"
            )
        analyzer = self._analyzers.get(category)
        if analyzer is None:
            raise UnsupportedCategoryError(f"No analyzer registered for category {category.value}")

        if category != AssessmentCategory.RESOURCE_GOVERNANCE and inputs.preferences is not None:
            inputs = inputs.model_copy(update={"preferences": None})

        mode = await self._credentials.resolve(inputs.tenant)
        logger.info(
            "category_dispatched",
            assessment_id=inputs.assessment_id,
            category=category.value,
            assessment_type=inputs.assessment_type.value,
            access_mode=mode.value,
        )
        result = await analyzer.analyze(inputs, mode, cancel)
        if result.score is None:
            raise RuntimeError(f"Analyzer for {category.value} produced no score")
        return result
