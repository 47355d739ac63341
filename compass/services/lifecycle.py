"""Assessment lifecycle — submission, background processing and recovery.

State machine::

    Pending ──claim──> InProgress ──success──> Completed
       │                    └──────error─────> Failed
       └──setup error (environment, tenant)──> Failed

``start`` persists a Pending record and hands processing to a supervised
background task; it never waits for the analysis. Each background unit opens
its own store session. The Pending to InProgress transition is a
compare-and-set, so only one execution can claim a given assessment even when
a sweep resubmits it while the original task is still starting.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Coroutine
from typing import Any

import structlog

from compass.errors import EnvironmentNotFoundError, MissingTenantContextError
from compass.schemas.assessment import (
    AssessmentCategory,
    AssessmentRecord,
    AssessmentRequest,
    AssessmentResult,
    AssessmentStatus,
)
from compass.schemas.inventory import ClientPreferenceOverride, Environment, TenantContext
from compass.services.analysis import AnalysisInputs
from compass.services.categories import get_category, parse_assessment_type
from compass.services.dispatcher import CategoryDispatcher
from compass.services.recommendations import build_metrics, generate_recommendations
from compass.store import AssessmentStore, SessionFactory, utcnow

logger = structlog.get_logger()


class TaskSupervisor:
    """Owns background tasks: keeps references, bounds concurrency, logs failures."""

    def __init__(self, max_concurrency: int = 8) -> None:
        self._limit = asyncio.Semaphore(max_concurrency)
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self.failures: list[tuple[str, BaseException]] = []

    def is_running(self, key: str) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    @property
    def active(self) -> int:
        return sum(1 for t in self._tasks.values() if not t.done())

    def spawn(self, key: str, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        async def _bounded() -> None:
            try:
                await self._limit.acquire()
            except asyncio.CancelledError:
                # Never started, so the record keeps its status for the next sweep
                coro.close()
                raise
            try:
                await coro
            finally:
                self._limit.release()

        task = asyncio.get_running_loop().create_task(_bounded(), name=f"assessment-{key}")
        self._tasks[key] = task
        task.add_done_callback(lambda t: self._on_done(key, t))
        return task

    def _on_done(self, key: str, task: asyncio.Task[None]) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if task.cancelled():
            logger.warning("background_task_cancelled", task_key=key)
            return
        exc = task.exception()
        if exc is not None:
            self.failures.append((key, exc))
            logger.error("background_task_failed", task_key=key, error=str(exc))

    async def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait until no task is running. Returns False on timeout."""
        tasks = [t for t in self._tasks.values() if not t.done()]
        if not tasks:
            return True
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        return not pending

    async def cancel_all(self) -> None:
        tasks = [t for t in self._tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


class AssessmentLifecycleManager:
    """Drives assessments from submission to a terminal state."""

    def __init__(
        self,
        session_factory: SessionFactory,
        dispatcher: CategoryDispatcher,
        supervisor: TaskSupervisor | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self.supervisor = supervisor or TaskSupervisor()
        self._abort = asyncio.Event()

    # ─── Submission ──────────────────────────────────────────────────────────

    async def start(self, request: AssessmentRequest) -> AssessmentRecord:
        """Persist a Pending assessment and schedule it. Returns immediately.

        Raises:
            InvalidAssessmentRequest: If the request names an unknown type.
        """
        assessment_type = parse_assessment_type(request.type)
        category = get_category(assessment_type)
        record = AssessmentRecord(
            id=str(uuid.uuid4()),
            organization_id=request.organization_id,
            environment_id=request.environment_id,
            name=request.name or f"{assessment_type.value} assessment",
            assessment_type=assessment_type,
            category=category,
            status=AssessmentStatus.PENDING,
            subscription_ids=list(request.subscription_ids),
            use_client_preferences=request.use_client_preferences,
            started_at=utcnow(),
        )
        async with self._session_factory() as store:
            await store.create(record)

        logger.info(
            "assessment_submitted",
            assessment_id=record.id,
            organization_id=record.organization_id,
            assessment_type=assessment_type.value,
            category=category.value,
        )
        self.supervisor.spawn(record.id, self._run(record))
        return record

    # ─── Processing ──────────────────────────────────────────────────────────

    async def _run(self, record: AssessmentRecord) -> None:
        try:
            await self.process(record)
        except asyncio.CancelledError:
            logger.warning("assessment_cancelled", assessment_id=record.id)
            await self._persist_failure(record.id, "Assessment cancelled during shutdown")
            raise
        except Exception as exc:
            logger.error("assessment_processing_crashed", assessment_id=record.id, error=str(exc))
            await self._persist_failure(record.id, str(exc))

    async def _persist_failure(
        self,
        assessment_id: str,
        reason: str,
        expected: AssessmentStatus | None = None,
    ) -> None:
        """Mark an assessment Failed from a fresh session.

        The session that hit the error may be unusable, so the failure is
        never written through it.
        """
        try:
            async with self._session_factory() as store:
                await store.update_status(
                    assessment_id, AssessmentStatus.FAILED, expected=expected, error_message=reason
                )
        except Exception as exc:
            logger.error("assessment_failure_not_persisted", assessment_id=assessment_id, error=str(exc))

    async def _resolve_context(
        self, store: AssessmentStore, record: AssessmentRecord
    ) -> tuple[Environment, TenantContext]:
        if not record.organization_id:
            raise MissingTenantContextError(f"Assessment {record.id} has no owning organization")
        environment = await store.get_environment(record.environment_id)
        if environment is None:
            raise EnvironmentNotFoundError(f"Environment {record.environment_id} not found")
        if environment.organization_id != record.organization_id:
            raise EnvironmentNotFoundError(
                f"Environment {record.environment_id} does not belong to organization {record.organization_id}"
            )
        tenant = TenantContext(
            organization_id=record.organization_id,
            client_id=environment.client_id,
            tenant_id=environment.tenant_id,
        )
        return environment, tenant

    async def _load_preferences(
        self, store: AssessmentStore, record: AssessmentRecord, environment: Environment
    ) -> ClientPreferenceOverride | None:
        if (
            record.category != AssessmentCategory.RESOURCE_GOVERNANCE
            or not record.use_client_preferences
            or environment.client_id is None
        ):
            return None
        try:
            return await store.get_preferences(environment.client_id, environment.organization_id)
        except Exception as exc:
            logger.warning("client_preferences_unavailable", assessment_id=record.id, error=str(exc))
            return None

    async def process(self, record: AssessmentRecord) -> None:
        """Process one Pending assessment to a terminal state in its own session."""
        log = logger.bind(assessment_id=record.id, organization_id=record.organization_id)
        async with self._session_factory() as store:
            try:
                environment, tenant = await self._resolve_context(store, record)
            except Exception as exc:
                log.error("assessment_setup_failed", error=str(exc))
                await self._persist_failure(record.id, str(exc), expected=AssessmentStatus.PENDING)
                return

            claimed = await store.update_status(
                record.id, AssessmentStatus.IN_PROGRESS, expected=AssessmentStatus.PENDING
            )
            if not claimed:
                log.info("assessment_already_claimed")
                return
            log.info("assessment_started", category=record.category.value)

            try:
                inputs = AnalysisInputs(
                    assessment_id=record.id,
                    assessment_type=record.assessment_type,
                    category=record.category,
                    environment=environment,
                    tenant=tenant,
                    subscription_ids=record.subscription_ids or list(environment.subscription_ids),
                    preferences=await self._load_preferences(store, record, environment),
                )
                result = await self._dispatcher.dispatch(record.category, inputs, self._abort)
                await store.create_findings(record.id, result.all_findings)
                if not await store.update_score(record.id, result.score):
                    raise RuntimeError(f"Assessment {record.id} left InProgress before completion")
            except Exception as exc:
                log.error("assessment_failed", error=str(exc), error_type=type(exc).__name__)
                await self._persist_failure(record.id, str(exc))
                return

            log.info(
                "assessment_completed",
                score=result.score,
                findings=len(result.all_findings),
                access_mode=result.access_mode,
            )

    # ─── Results ─────────────────────────────────────────────────────────────

    async def get_result(self, assessment_id: str) -> AssessmentResult | None:
        async with self._session_factory() as store:
            record = await store.get(assessment_id)
            if record is None:
                return None
            findings = await store.get_findings(assessment_id) if record.status == AssessmentStatus.COMPLETED else []

        return AssessmentResult(
            assessment_id=record.id,
            name=record.name,
            assessment_type=record.assessment_type,
            category=record.category,
            status=record.status,
            score=record.overall_score if record.status == AssessmentStatus.COMPLETED else None,
            error_message=record.error_message,
            started_at=record.started_at,
            completed_at=record.completed_at,
            findings=findings,
            recommendations=generate_recommendations(findings),
            metrics=build_metrics(findings),
        )

    # ─── Recovery ────────────────────────────────────────────────────────────

    async def count_pending(self) -> int:
        async with self._session_factory() as store:
            return len(await store.get_pending())

    async def sweep_pending(self, stop: asyncio.Event | None = None) -> int:
        """Resubmit assessments stuck in Pending. Returns how many were resubmitted.

        Each one is handed to the supervisor like a fresh submission, so
        cancelling the caller never cancels the processing. ``stop`` is
        checked between assessments.
        """
        async with self._session_factory() as store:
            pending = await store.get_pending()

        resubmitted = 0
        for record in pending:
            if stop is not None and stop.is_set():
                logger.info("pending_sweep_stopped", remaining=len(pending) - resubmitted)
                break
            if self.supervisor.is_running(record.id):
                continue
            logger.info("pending_assessment_resubmitted", assessment_id=record.id)
            resubmitted += 1
            self.supervisor.spawn(record.id, self._run(record))

        if resubmitted:
            logger.info("pending_sweep_completed", resubmitted=resubmitted)
        return resubmitted

    async def run_sweep_loop(self, interval: float, stop: asyncio.Event) -> None:
        """Sweep on a timer until ``stop`` is set."""
        logger.info("pending_sweep_loop_started", interval_seconds=interval)
        while not stop.is_set():
            try:
                await self.sweep_pending(stop)
            except Exception as exc:
                logger.error("pending_sweep_failed", error=str(exc))
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        logger.info("pending_sweep_loop_stopped")

    async def wait_idle(self, timeout: float | None = None) -> bool:
        return await self.supervisor.wait_idle(timeout)

    async def shutdown(self, grace_seconds: float) -> None:
        """Let running assessments finish, then cancel whatever remains."""
        if await self.supervisor.wait_idle(grace_seconds):
            return
        logger.warning("assessments_aborted_on_shutdown", active=self.supervisor.active)
        self._abort.set()
        await self.supervisor.cancel_all()
