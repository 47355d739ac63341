"""Tests for the SQLAlchemy assessment store, run against SQLite."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from compass.config import Settings
from compass.container import build_services
from compass.database import SqlDatabase
from compass.models import AzureEnvironment, ClientPreferences
from compass.schemas.assessment import AssessmentRecord, AssessmentRequest, AssessmentStatus, AssessmentType
from compass.schemas.findings import Finding, Severity
from compass.services.categories import get_category
from compass.services.collector import RateLimitedCollector
from compass.services.credentials import CredentialResolver
from compass.services.dispatcher import CategoryDispatcher
from compass.services.governance import GovernanceAnalyzer
from compass.services.lifecycle import AssessmentLifecycleManager
from tests.fakes import SUBSCRIPTION, FakeCatalog, FakeProbe, resource

S = AssessmentStatus


def _record(assessment_id: str, started_at: datetime | None = None) -> AssessmentRecord:
    return AssessmentRecord(
        id=assessment_id,
        organization_id="org-1",
        environment_id="env-1",
        name="SQL assessment",
        assessment_type=AssessmentType.TAGGING,
        category=get_category(AssessmentType.TAGGING),
        subscription_ids=[SUBSCRIPTION],
        started_at=started_at or datetime.now(timezone.utc),
    )


def _finding(name: str, severity: Severity = Severity.HIGH) -> Finding:
    return Finding(
        category="Tagging",
        finding_type="NoTags",
        resource_id=f"/r/{name}",
        resource_name=name,
        severity=severity,
        issue="Resource has no tags.",
        recommendation="Apply tags.",
    )


def _with_database(tmp_path, body):
    """Run ``body(db)`` against a fresh SQLite file database."""

    async def main():
        db = SqlDatabase(f"sqlite+aiosqlite:///{tmp_path / 'compass.db'}")
        await db.create_all()
        try:
            return await body(db)
        finally:
            await db.dispose()

    return asyncio.run(main())


async def _seed_environment(db: SqlDatabase) -> None:
    async with db.session() as store:
        store.session.add(AzureEnvironment(
            id="env-1",
            organization_id="org-1",
            name="Production",
            subscription_ids=[SUBSCRIPTION],
            client_id="client-1",
            tenant_id="tenant-1",
        ))
        await store.session.commit()


async def _reject_findings(db: SqlDatabase) -> None:
    """Make every insert into assessment_findings abort."""
    async with db.engine.begin() as conn:
        await conn.execute(text(
            "CREATE TRIGGER reject_findings BEFORE INSERT ON assessment_findings "
            "BEGIN SELECT RAISE(ABORT, 'findings rejected'); END"
        ))


def _manager(db: SqlDatabase, catalog: FakeCatalog | None = None) -> AssessmentLifecycleManager:
    collector = RateLimitedCollector(max_concurrency=2, min_interval=0.0)
    dispatcher = CategoryDispatcher(
        [GovernanceAnalyzer(catalog or FakeCatalog(), collector)],
        CredentialResolver(FakeProbe(), collector),
    )
    return AssessmentLifecycleManager(db.session, dispatcher)


# ─── Status transitions ──────────────────────────────────────────────────────

class TestStatusTransitions:
    """Compare-and-set updates and terminal states."""

    def test_claim_only_once(self, tmp_path):
        """Two sessions race for the claim and only the first wins."""
        async def body(db):
            async with db.session() as store:
                await store.create(_record("a-1"))
            async with db.session() as first, db.session() as second:
                claims = [
                    await first.update_status("a-1", S.IN_PROGRESS, expected=S.PENDING),
                    await second.update_status("a-1", S.IN_PROGRESS, expected=S.PENDING),
                ]
            async with db.session() as store:
                return claims, await store.get("a-1")

        claims, record = _with_database(tmp_path, body)
        assert claims == [True, False]
        assert record.status == S.IN_PROGRESS

    def test_terminal_status_is_final(self, tmp_path):
        """A Failed record cannot be moved back to InProgress."""
        async def body(db):
            async with db.session() as store:
                await store.create(_record("a-1"))
                failed = await store.update_status("a-1", S.FAILED, error_message="boom")
                reopened = await store.update_status("a-1", S.IN_PROGRESS)
                return failed, reopened, await store.get("a-1")

        failed, reopened, record = _with_database(tmp_path, body)
        assert (failed, reopened) == (True, False)
        assert record.status == S.FAILED
        assert record.error_message == "boom"
        assert record.completed_at is not None

    def test_score_requires_in_progress(self, tmp_path):
        """The score is only written to a claimed assessment."""
        async def body(db):
            async with db.session() as store:
                await store.create(_record("a-1"))
                early = await store.update_score("a-1", 80.0)
                await store.update_status("a-1", S.IN_PROGRESS, expected=S.PENDING)
                scored = await store.update_score("a-1", 80.0)
                return early, scored, await store.get("a-1")

        early, scored, record = _with_database(tmp_path, body)
        assert (early, scored) == (False, True)
        assert record.status == S.COMPLETED
        assert record.overall_score == 80.0

    def test_unknown_assessment(self, tmp_path):
        """Reads and updates of an unknown id find nothing."""
        async def body(db):
            async with db.session() as store:
                return await store.get("missing"), await store.update_status("missing", S.FAILED)

        assert _with_database(tmp_path, body) == (None, False)


# ─── Findings and queries ────────────────────────────────────────────────────

class TestFindingsAndQueries:
    """Findings ordering and reference-data lookups."""

    def test_findings_keep_insertion_order(self, tmp_path):
        """Findings come back in the order they were written, across batches."""
        async def body(db):
            async with db.session() as store:
                await store.create(_record("a-1"))
                await store.create_findings("a-1", [_finding("b"), _finding("a", Severity.LOW)])
                await store.create_findings("a-1", [_finding("c")])
            async with db.session() as store:
                return await store.get_findings("a-1")

        findings = _with_database(tmp_path, body)
        assert [f.resource_name for f in findings] == ["b", "a", "c"]
        assert findings[1].severity == Severity.LOW

    def test_pending_oldest_first(self, tmp_path):
        """Pending records are returned oldest first, terminal ones excluded."""
        now = datetime.now(timezone.utc)

        async def body(db):
            async with db.session() as store:
                await store.create(_record("newer", now))
                await store.create(_record("older", now - timedelta(minutes=5)))
                await store.create(_record("done", now - timedelta(minutes=10)))
                await store.update_status("done", S.FAILED)
                return await store.get_pending()

        assert [r.id for r in _with_database(tmp_path, body)] == ["older", "newer"]

    def test_environment_lookup(self, tmp_path):
        """Environments map to the schema with subscriptions and tenant."""
        async def body(db):
            await _seed_environment(db)
            async with db.session() as store:
                return await store.get_environment("env-1"), await store.get_environment("env-2")

        environment, missing = _with_database(tmp_path, body)
        assert environment.organization_id == "org-1"
        assert environment.subscription_ids == [SUBSCRIPTION]
        assert (environment.client_id, environment.tenant_id) == ("client-1", "tenant-1")
        assert missing is None

    def test_preferences_lookup(self, tmp_path):
        """Preferences are scoped to client and organization."""
        async def body(db):
            async with db.session() as store:
                store.session.add(ClientPreferences(
                    client_id="client-1",
                    organization_id="org-1",
                    required_tags=["Team"],
                    enforce_tag_compliance=True,
                ))
                await store.session.commit()
                return (
                    await store.get_preferences("client-1", "org-1"),
                    await store.get_preferences("client-1", "org-2"),
                )

        preferences, other = _with_database(tmp_path, body)
        assert preferences.required_tags == ["Team"]
        assert preferences.enforce_tag_compliance is True
        assert other is None


# ─── Lifecycle over SQL ──────────────────────────────────────────────────────

class TestLifecycleOnSql:
    """Full lifecycle runs against the SQL store."""

    def test_assessment_completes(self, tmp_path):
        """A Tagging run persists its findings and score."""
        async def body(db):
            await _seed_environment(db)
            manager = _manager(db, FakeCatalog([resource("vm-a", "Microsoft.Compute/virtualMachines")]))
            record = await manager.start(AssessmentRequest(
                type="Tagging", environment_id="env-1", organization_id="org-1",
            ))
            await manager.wait_idle()
            return await manager.get_result(record.id)

        result = _with_database(tmp_path, body)
        assert result.status == S.COMPLETED
        assert [f.finding_type for f in result.findings] == ["NoTags"]
        assert result.score is not None

    def test_missing_environment_fails(self, tmp_path):
        """An unknown environment fails without a score."""
        async def body(db):
            manager = _manager(db)
            record = await manager.start(AssessmentRequest(
                type="Tagging", environment_id="env-1", organization_id="org-1",
            ))
            await manager.wait_idle()
            return await manager.get_result(record.id)

        result = _with_database(tmp_path, body)
        assert result.status == S.FAILED
        assert result.score is None
        assert result.findings == []

    def test_rejected_findings_insert_marks_failed(self, tmp_path):
        """A database error while saving findings still ends the assessment as Failed."""
        async def body(db):
            await _seed_environment(db)
            await _reject_findings(db)
            manager = _manager(db, FakeCatalog([resource("vm-a", "Microsoft.Compute/virtualMachines")]))
            record = await manager.start(AssessmentRequest(
                type="Tagging", environment_id="env-1", organization_id="org-1",
            ))
            await manager.wait_idle()
            return await manager.get_result(record.id)

        result = _with_database(tmp_path, body)
        assert result.status == S.FAILED
        assert "findings rejected" in result.error_message
        assert result.score is None
        assert result.completed_at is not None


class TestFailedWrites:
    """A failed write is rolled back and leaves the session usable."""

    def test_session_usable_after_failed_findings_insert(self, tmp_path):
        """After a rejected insert the same session can still update status."""
        async def body(db):
            await _reject_findings(db)
            async with db.session() as store:
                await store.create(_record("a-1"))
                await store.update_status("a-1", S.IN_PROGRESS, expected=S.PENDING)
                with pytest.raises(IntegrityError):
                    await store.create_findings("a-1", [_finding("a")])
                failed = await store.update_status("a-1", S.FAILED, error_message="findings rejected")
            async with db.session() as store:
                return failed, await store.get("a-1"), await store.get_findings("a-1")

        failed, record, findings = _with_database(tmp_path, body)
        assert failed is True
        assert record.status == S.FAILED
        assert findings == []

    def test_duplicate_create_rolled_back(self, tmp_path):
        """A duplicate id is rejected and the original record is untouched."""
        async def body(db):
            async with db.session() as store:
                await store.create(_record("a-1"))
            async with db.session() as store:
                with pytest.raises(IntegrityError):
                    await store.create(_record("a-1"))
                return await store.get("a-1")

        record = _with_database(tmp_path, body)
        assert record.status == S.PENDING


class TestSqlBackendWiring:
    def test_sql_backend_selected_from_settings(self, tmp_path, sources):
        """store_backend=sql wires the lifecycle to a SqlDatabase."""
        settings = Settings(store_backend="sql", database_url=f"sqlite+aiosqlite:///{tmp_path / 'wired.db'}")
        services = build_services(settings, sources=sources)

        async def main():
            await services.sql.create_all()
            try:
                return await services.lifecycle.count_pending()
            finally:
                await services.sql.dispose()

        assert isinstance(services.sql, SqlDatabase)
        assert asyncio.run(main()) == 0
