"""SQLAlchemy-backed assessment store.

``SqlDatabase.session()`` opens a fresh ``AsyncSession`` per unit of work, so
a background assessment never shares a connection or transaction with the
request that submitted it or with another assessment.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from compass.models import Assessment, AssessmentFinding, AzureEnvironment, Base, ClientPreferences
from compass.models.base import utcnow
from compass.schemas.assessment import AssessmentCategory, AssessmentRecord, AssessmentStatus, AssessmentType
from compass.schemas.findings import Effort, Finding, Severity
from compass.schemas.inventory import ClientPreferenceOverride, Environment

TERMINAL_STATUSES = (AssessmentStatus.COMPLETED.value, AssessmentStatus.FAILED.value)


def _to_record(row: Assessment) -> AssessmentRecord:
    return AssessmentRecord(
        id=row.id,
        organization_id=row.organization_id,
        environment_id=row.environment_id,
        name=row.name,
        assessment_type=AssessmentType(row.assessment_type),
        category=AssessmentCategory(row.assessment_category),
        status=AssessmentStatus(row.status),
        overall_score=row.overall_score,
        subscription_ids=list(row.subscription_ids or []),
        use_client_preferences=row.use_client_preferences,
        error_message=row.error_message,
        started_at=row.started_at,
        completed_at=row.completed_at,
    )


def _to_finding(row: AssessmentFinding) -> Finding:
    return Finding(
        category=row.category,
        finding_type=row.finding_type,
        resource_id=row.resource_id,
        resource_name=row.resource_name,
        resource_type=row.resource_type or "",
        severity=Severity(row.severity),
        issue=row.issue,
        recommendation=row.recommendation,
        effort=Effort(row.effort),
        scored=row.scored,
    )


class SqlAssessmentStore:
    """``AssessmentStore`` over a single ``AsyncSession``. Commits after every write.

    A failed write is rolled back before the error propagates, so the session
    stays usable.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @asynccontextmanager
    async def _write(self) -> AsyncIterator[None]:
        try:
            yield
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

    async def create(self, record: AssessmentRecord) -> None:
        async with self._write():
            self._add_assessment(record)

    def _add_assessment(self, record: AssessmentRecord) -> None:
        self.session.add(Assessment(
            id=record.id,
            organization_id=record.organization_id,
            environment_id=record.environment_id,
            name=record.name,
            assessment_type=record.assessment_type.value,
            assessment_category=record.category.value,
            status=record.status.value,
            overall_score=record.overall_score,
            subscription_ids=list(record.subscription_ids),
            use_client_preferences=record.use_client_preferences,
            started_at=record.started_at,
        ))

    async def get(self, assessment_id: str) -> AssessmentRecord | None:
        row = await self.session.get(Assessment, assessment_id, populate_existing=True)
        return _to_record(row) if row else None

    async def update_status(
        self,
        assessment_id: str,
        status: AssessmentStatus,
        *,
        expected: AssessmentStatus | None = None,
        error_message: str | None = None,
    ) -> bool:
        stmt = (
            update(Assessment)
            .where(Assessment.id == assessment_id, Assessment.status.not_in(TERMINAL_STATUSES))
            .values(status=status.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if expected is not None:
            stmt = stmt.where(Assessment.status == expected.value)
        if error_message is not None:
            stmt = stmt.values(error_message=error_message)
        if status.is_terminal:
            stmt = stmt.values(completed_at=utcnow())
        async with self._write():
            result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def update_score(self, assessment_id: str, score: float) -> bool:
        async with self._write():
            result = await self.session.execute(
                update(Assessment)
                .where(Assessment.id == assessment_id, Assessment.status == AssessmentStatus.IN_PROGRESS.value)
                .values(
                    overall_score=score,
                    status=AssessmentStatus.COMPLETED.value,
                    completed_at=utcnow(),
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
        return result.rowcount == 1

    async def create_findings(self, assessment_id: str, findings: list[Finding]) -> None:
        async with self._write():
            start = await self.session.scalar(
                select(func.count())
                .select_from(AssessmentFinding)
                .where(AssessmentFinding.assessment_id == assessment_id)
            )
            self._add_findings(assessment_id, findings, start or 0)

    def _add_findings(self, assessment_id: str, findings: list[Finding], start: int) -> None:
        self.session.add_all([
            AssessmentFinding(
                assessment_id=assessment_id,
                sequence=start + i,
                category=f.category,
                finding_type=f.finding_type,
                resource_id=f.resource_id,
                resource_name=f.resource_name,
                resource_type=f.resource_type,
                severity=f.severity.value,
                issue=f.issue,
                recommendation=f.recommendation,
                effort=f.effort.value,
                scored=f.scored,
            )
            for i, f in enumerate(findings)
        ])

    async def get_findings(self, assessment_id: str) -> list[Finding]:
        rows = await self.session.scalars(
            select(AssessmentFinding)
            .where(AssessmentFinding.assessment_id == assessment_id)
            .order_by(AssessmentFinding.sequence)
        )
        return [_to_finding(r) for r in rows]

    async def get_pending(self) -> list[AssessmentRecord]:
        rows = await self.session.scalars(
            select(Assessment)
            .where(Assessment.status == AssessmentStatus.PENDING.value)
            .order_by(Assessment.started_at)
        )
        return [_to_record(r) for r in rows]

    async def get_environment(self, environment_id: str) -> Environment | None:
        row = await self.session.get(AzureEnvironment, environment_id)
        if row is None:
            return None
        return Environment(
            id=row.id,
            organization_id=row.organization_id,
            name=row.name,
            subscription_ids=list(row.subscription_ids or []),
            client_id=row.client_id,
            tenant_id=row.tenant_id,
        )

    async def get_preferences(self, client_id: str, organization_id: str) -> ClientPreferenceOverride | None:
        row = await self.session.scalar(
            select(ClientPreferences).where(
                ClientPreferences.client_id == client_id,
                ClientPreferences.organization_id == organization_id,
            )
        )
        if row is None:
            return None
        override = ClientPreferenceOverride(
            client_id=row.client_id,
            organization_id=row.organization_id,
            required_tags=list(row.required_tags or []),
            enforce_tag_compliance=row.enforce_tag_compliance,
            allowed_naming_patterns=list(row.allowed_naming_patterns or []),
            require_environment_indicator=row.require_environment_indicator,
        )
        if row.environment_indicators:
            override.environment_indicators = list(row.environment_indicators)
        return override


class SqlDatabase:
    """Engine plus session factory for the SQL store."""

    def __init__(self, database_url: str, engine: AsyncEngine | None = None) -> None:
        self.engine = engine or create_async_engine(database_url, pool_pre_ping=True)
        self._sessions = async_sessionmaker(self.engine, expire_on_commit=False)

    async def create_all(self) -> None:
        """Create tables directly, for development databases and tests."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[SqlAssessmentStore]:
        async with self._sessions() as session:
            yield SqlAssessmentStore(session)
