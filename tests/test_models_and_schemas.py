"""Tests for models and schemas — structural validation.

Covers: ORM table layout, Pydantic validation rules, and the derived
properties on inventory and status schemas.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from compass.models import Assessment, AssessmentFinding, AzureEnvironment, Base, ClientPreferences
from compass.models.base import utcnow
from compass.schemas.assessment import AssessmentRequest, AssessmentStatus
from compass.schemas.costs import CostTrendRequest
from compass.schemas.findings import CategoryResult, Finding, Severity
from compass.schemas.health import ComponentHealth, HealthResponse
from compass.schemas.inventory import ClientPreferenceOverride, TenantContext
from tests.fakes import resource


# ─── Base model tests ────────────────────────────────────────────────────────

class TestBaseModel:
    """Tests for the SQLAlchemy base model."""

    def test_utcnow_returns_utc(self):
        """utcnow should return a timezone-aware UTC datetime."""
        now = utcnow()
        assert now.tzinfo == timezone.utc

    def test_utcnow_is_current(self):
        """utcnow should match the wall clock."""
        before = datetime.now(timezone.utc)
        now = utcnow()
        after = datetime.now(timezone.utc)
        assert before <= now <= after

    def test_base_is_declarative(self):
        """Base should be a SQLAlchemy declarative base."""
        from sqlalchemy.orm import DeclarativeBase
        assert issubclass(Base, DeclarativeBase)

    def test_all_tables_registered(self):
        """All four tables should be registered on the metadata."""
        assert set(Base.metadata.tables) == {
            "assessments", "assessment_findings", "azure_environments", "client_preferences",
        }


# ─── Assessment model tests ──────────────────────────────────────────────────

class TestAssessmentModels:
    """Tests for the assessment and finding tables."""

    def test_assessment_has_required_columns(self):
        """Assessment should carry status, score and timing columns."""
        columns = {c.name for c in Assessment.__table__.columns}
        required = {"id", "organization_id", "environment_id", "assessment_type", "assessment_category",
                    "status", "overall_score", "error_message", "started_at", "completed_at"}
        assert required.issubset(columns)

    def test_assessment_status_indexed(self):
        """Status should be indexed for the pending sweep."""
        assert Assessment.__table__.c.status.index

    def test_finding_references_assessment(self):
        """Findings should reference their assessment."""
        foreign_keys = {fk.target_fullname for fk in AssessmentFinding.__table__.foreign_keys}
        assert foreign_keys == {"assessments.id"}

    def test_finding_has_sequence_and_scored(self):
        """Findings should store order and whether they are scored."""
        columns = {c.name for c in AssessmentFinding.__table__.columns}
        assert {"sequence", "scored", "severity", "effort"}.issubset(columns)

    def test_assessment_repr(self):
        """repr should show the type and the id."""
        row = Assessment(id="12345678-aaaa", assessment_type="Tagging", status="Pending")
        assert "Tagging" in repr(row)
        assert "12345678" in repr(row)


class TestEnvironmentModels:
    def test_environment_tablename(self):
        """Environments should live in azure_environments."""
        assert AzureEnvironment.__tablename__ == "azure_environments"

    def test_preferences_columns(self):
        """Preferences should store required tags and enforcement."""
        columns = {c.name for c in ClientPreferences.__table__.columns}
        assert {"client_id", "organization_id", "required_tags", "enforce_tag_compliance"}.issubset(columns)


# ─── Assessment schema tests ─────────────────────────────────────────────────

class TestAssessmentSchemas:
    def test_request_requires_environment(self):
        """A request without an environment is invalid."""
        with pytest.raises(ValidationError):
            AssessmentRequest(type="Tagging")

    def test_request_rejects_empty_type(self):
        """An empty type is invalid."""
        with pytest.raises(ValidationError):
            AssessmentRequest(type="", environment_id="env-1")

    def test_request_defaults(self):
        """Optional request fields should default to empty."""
        req = AssessmentRequest(type="Tagging", environment_id="env-1")
        assert req.subscription_ids == []
        assert req.use_client_preferences is False
        assert req.organization_id is None

    def test_terminal_statuses(self):
        """Only Completed and Failed are terminal."""
        assert [s for s in AssessmentStatus if s.is_terminal] == [
            AssessmentStatus.COMPLETED, AssessmentStatus.FAILED,
        ]


# ─── Finding schema tests ────────────────────────────────────────────────────

class TestFindingSchemas:
    def _finding(self, severity=Severity.HIGH, scored=True):
        return Finding(
            category="Tagging", finding_type="NoTags", resource_id="/r/a", resource_name="a",
            severity=severity, issue="x", recommendation="y", scored=scored,
        )

    def test_finding_is_frozen(self):
        """Findings cannot be modified after creation."""
        finding = self._finding()
        with pytest.raises(ValidationError):
            finding.severity = Severity.LOW

    def test_severity_rank_ordering(self):
        """Severity ranks order low to critical."""
        assert sorted(Severity, key=lambda s: s.rank) == [
            Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL,
        ]

    def test_descriptive_findings_not_counted(self):
        """Descriptive findings are excluded from severity counts."""
        result = CategoryResult(category="ResourceGovernance", assessment_type="Tagging", access_mode="default")
        result.findings.append(self._finding())
        result.descriptive_findings.append(self._finding(scored=False))
        assert result.count_severity(Severity.HIGH) == 1
        assert len(result.all_findings) == 2


# ─── Inventory schema tests ──────────────────────────────────────────────────

class TestInventorySchemas:
    def test_environment_from_tag(self):
        """The Env tag decides the environment."""
        assert resource("app", "Microsoft.Web/sites", tags={"Env": "Prod"}).environment == "prod"

    def test_environment_from_name(self):
        """Without a tag the environment comes from the name."""
        assert resource("app-dev-01", "Microsoft.Web/sites").environment == "dev"

    def test_no_environment(self):
        """No tag and no token means no environment."""
        assert resource("app", "Microsoft.Web/sites").environment is None

    def test_nested_property_lookup(self):
        """prop walks nested properties with a default."""
        res = resource("vm", "Microsoft.Compute/virtualMachines", properties={"a": {"b": 1}})
        assert res.prop("a", "b") == 1
        assert res.prop("a", "c", default="x") == "x"

    def test_delegation_requires_client(self):
        """Delegation needs a client id."""
        assert TenantContext(organization_id="org-1", client_id="c").has_delegation
        assert not TenantContext(organization_id="org-1").has_delegation

    def test_preference_indicator_defaults(self):
        """Preferences default to the standard environment tokens."""
        prefs = ClientPreferenceOverride(client_id="c", organization_id="o")
        assert prefs.environment_indicators == ["dev", "test", "stg", "prod"]


# ─── Cost and health schema tests ────────────────────────────────────────────

class TestCostAndHealthSchemas:
    def test_cost_request_period_bounds(self):
        """Periods over a year are rejected."""
        with pytest.raises(ValidationError):
            CostTrendRequest(environment_id="e", organization_id="o", period_days=400)

    def test_cost_request_defaults(self):
        """Cost requests default to 30 days grouped by resource group."""
        req = CostTrendRequest(environment_id="e", organization_id="o")
        assert (req.period_days, req.group_by, req.end_date) == (30, "resource_group", None)

    def test_health_response_serialises(self):
        """Health responses should serialise with an empty load."""
        health = HealthResponse(
            status="healthy",
            version="1.0.0",
            environment="development",
            components=[ComponentHealth(component="store", status="healthy", latency_ms=0.5)],
        )
        data = health.model_dump()
        assert data["load"]["active_assessments"] == 0
        assert data["components"][0]["component"] == "store"
