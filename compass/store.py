"""Assessment store contract and the in-memory implementation.

Every unit of work opens its own session from a session factory and never
hands it to another unit. The in-memory database keeps a journal of which
session wrote what so that isolation can be checked in tests. In production
the SQL backend in ``compass.database`` is used instead.
"""

from __future__ import annotations

import itertools
import threading
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

from compass.schemas.assessment import AssessmentRecord, AssessmentStatus
from compass.schemas.findings import Finding
from compass.schemas.inventory import ClientPreferenceOverride, Environment


class AssessmentStore(Protocol):
    """Session-scoped access to assessments and their reference data."""

    async def create(self, record: AssessmentRecord) -> None: ...

    async def get(self, assessment_id: str) -> AssessmentRecord | None: ...

    async def update_status(
        self,
        assessment_id: str,
        status: AssessmentStatus,
        *,
        expected: AssessmentStatus | None = None,
        error_message: str | None = None,
    ) -> bool: ...

    async def update_score(self, assessment_id: str, score: float) -> bool: ...

    async def create_findings(self, assessment_id: str, findings: list[Finding]) -> None: ...

    async def get_findings(self, assessment_id: str) -> list[Finding]: ...

    async def get_pending(self) -> list[AssessmentRecord]: ...

    async def get_environment(self, environment_id: str) -> Environment | None: ...

    async def get_preferences(self, client_id: str, organization_id: str) -> ClientPreferenceOverride | None: ...


SessionFactory = Callable[[], AbstractAsyncContextManager[AssessmentStore]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class JournalEntry:
    session_id: int
    operation: str
    assessment_id: str


class InMemoryDatabase:
    """Thread-safe in-memory backing store for development and testing."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._session_ids = itertools.count(1)
        self.assessments: dict[str, AssessmentRecord] = {}
        self.findings: dict[str, list[Finding]] = {}
        self.environments: dict[str, Environment] = {}
        self.preferences: dict[tuple[str, str], ClientPreferenceOverride] = {}
        self.journal: list[JournalEntry] = []
        self.sessions_opened = 0

    def reset(self) -> None:
        """Clear all data — used in tests."""
        self.__init__()

    def add_environment(self, environment: Environment) -> None:
        self.environments[environment.id] = environment

    def add_preferences(self, preferences: ClientPreferenceOverride) -> None:
        self.preferences[(preferences.client_id, preferences.organization_id)] = preferences

    def writes_by_session(self) -> dict[int, set[str]]:
        """Assessment ids written by each session."""
        result: dict[int, set[str]] = {}
        for entry in self.journal:
            result.setdefault(entry.session_id, set()).add(entry.assessment_id)
        return result

    @asynccontextmanager
    async def session(self) -> AsyncIterator[InMemorySession]:
        with self._lock:
            session_id = next(self._session_ids)
            self.sessions_opened += 1
        session = InMemorySession(self, session_id)
        try:
            yield session
        finally:
            session.close()


class InMemorySession:
    """One unit of work's view of an ``InMemoryDatabase``."""

    def __init__(self, db: InMemoryDatabase, session_id: int) -> None:
        self._db = db
        self.session_id = session_id
        self.closed = False

    def close(self) -> None:
        self.closed = True

    def _check_open(self) -> None:
        if self.closed:
            raise RuntimeError(f"Store session {self.session_id} is closed")

    def _record(self, operation: str, assessment_id: str) -> None:
        self._db.journal.append(JournalEntry(self.session_id, operation, assessment_id))

    async def create(self, record: AssessmentRecord) -> None:
        self._check_open()
        with self._db._lock:
            if record.id in self._db.assessments:
                raise ValueError(f"Assessment {record.id} already exists")
            self._db.assessments[record.id] = record.model_copy(deep=True)
            self._record("create", record.id)

    async def get(self, assessment_id: str) -> AssessmentRecord | None:
        self._check_open()
        with self._db._lock:
            record = self._db.assessments.get(assessment_id)
            return record.model_copy(deep=True) if record else None

    async def update_status(
        self,
        assessment_id: str,
        status: AssessmentStatus,
        *,
        expected: AssessmentStatus | None = None,
        error_message: str | None = None,
    ) -> bool:
        self._check_open()
        with self._db._lock:
            record = self._db.assessments.get(assessment_id)
            if record is None or record.status.is_terminal:
                return False
            if expected is not None and record.status != expected:
                return False
            record.status = status
            if error_message is not None:
                record.error_message = error_message
            if status.is_terminal:
                record.completed_at = utcnow()
            self._record(f"status:{status.value}", assessment_id)
            return True

    async def update_score(self, assessment_id: str, score: float) -> bool:
        self._check_open()
        with self._db._lock:
            record = self._db.assessments.get(assessment_id)
            if record is None or record.status != AssessmentStatus.IN_PROGRESS:
                return False
            record.overall_score = score
            record.status = AssessmentStatus.COMPLETED
            record.completed_at = utcnow()
            self._record("score", assessment_id)
            return True

    async def create_findings(self, assessment_id: str, findings: list[Finding]) -> None:
        self._check_open()
        with self._db._lock:
            self._db.findings.setdefault(assessment_id, []).extend(findings)
            self._record("findings", assessment_id)

    async def get_findings(self, assessment_id: str) -> list[Finding]:
        self._check_open()
        with self._db._lock:
            return list(self._db.findings.get(assessment_id, []))

    async def get_pending(self) -> list[AssessmentRecord]:
        self._check_open()
        with self._db._lock:
            pending = [
                r.model_copy(deep=True)
                for r in self._db.assessments.values()
                if r.status == AssessmentStatus.PENDING
            ]
        return sorted(pending, key=lambda r: r.started_at)

    async def get_environment(self, environment_id: str) -> Environment | None:
        self._check_open()
        return self._db.environments.get(environment_id)

    async def get_preferences(self, client_id: str, organization_id: str) -> ClientPreferenceOverride | None:
        self._check_open()
        return self._db.preferences.get((client_id, organization_id))


# Process-wide database, reset between tests
database = InMemoryDatabase()
