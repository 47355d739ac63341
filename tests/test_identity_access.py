"""Tests for the identity and access management analyzer."""

from __future__ import annotations

import asyncio

from compass.schemas.assessment import AssessmentType
from compass.schemas.findings import Severity
from compass.schemas.inventory import (
    Application,
    ConditionalAccessPolicy,
    ConditionalAccessSnapshot,
    DirectoryUser,
    ManagedDevice,
    Principal,
)
from compass.services.credentials import AccessMode
from compass.services.identity_access import IdentityAccessAnalyzer
from tests.fakes import FakeCatalog, FakeIdentity, inputs, resource

T = AssessmentType


def _types(result):
    return [f.finding_type for f in result.findings]


def _analyze(collector, assessment_type, identity=None, resources=None, mode=AccessMode.ENHANCED):
    analyzer = IdentityAccessAnalyzer(FakeCatalog(resources or []), identity, collector)
    return asyncio.run(analyzer.analyze(inputs(assessment_type), mode))


# ─── Limited analysis ────────────────────────────────────────────────────────

class TestLimitedAnalysis:
    """Without directory access each skipped area becomes one limited finding."""

    def test_enterprise_applications_without_directory(self, collector):
        """Limited finding plus a neutral conditional access dimension."""
        result = _analyze(collector, T.ENTERPRISE_APPLICATIONS, FakeIdentity(access=False))
        assert "EnterpriseApplicationAnalysisLimited" in _types(result)
        assert result.sub_scores["conditional_access"] == 50
        assert "conditional_access" in result.unavailable
        assert result.score == 90
        assert result.details["directory_access"] is False

    def test_default_mode_never_probes_directory(self, collector):
        """Default mode skips the directory and reports every limited area."""
        identity = FakeIdentity(access=True)
        result = _analyze(collector, T.IDENTITY_FULL, identity, mode=AccessMode.DEFAULT)
        assert identity.calls == []
        assert {
            "EnterpriseApplicationAnalysisLimited",
            "UserDeviceAnalysisLimited",
            "RbacAnalysisLimited",
            "ConditionalAccessAnalysisLimited",
            "ConditionalAccessBestPractices",
        } <= set(_types(result))

    def test_no_identity_source(self, collector):
        """Without an identity source conditional access is neutral."""
        result = _analyze(collector, T.CONDITIONAL_ACCESS, None)
        limited = [f for f in result.findings if f.finding_type == "ConditionalAccessAnalysisLimited"]
        assert len(limited) == 1
        assert limited[0].severity == Severity.MEDIUM
        assert result.sub_scores["conditional_access"] == 50

    def test_inventory_rules_still_run(self, collector):
        """Inventory-based identity checks run without directory access."""
        resources = [resource("app-web", "Microsoft.Web/sites")]
        result = _analyze(collector, T.ENTERPRISE_APPLICATIONS, FakeIdentity(access=False), resources)
        assert "AppServiceMissingManagedIdentity" in _types(result)


# ─── Enhanced analysis ───────────────────────────────────────────────────────

class TestEnterpriseApplications:
    """Application credential and permission checks."""

    def test_application_findings(self, collector):
        """Expired, missing and high-privilege credentials are flagged per app."""
        identity = FakeIdentity(applications=[
            Application(id="a1", display_name="Legacy", credential_count=2, expired_credential_count=1),
            Application(
                id="a2", display_name="Sync", credential_count=1,
                high_privilege_permissions=["Directory.ReadWrite.All"],
            ),
            Application(id="a3", display_name="Unused", credential_count=0),
        ])
        result = _analyze(collector, T.ENTERPRISE_APPLICATIONS, identity)
        assert sorted(_types(result)) == [
            "ApplicationExcessivePermissions",
            "ApplicationExpiredCredentials",
            "ApplicationWithoutCredentials",
        ]
        assert result.counters["total_applications"] == 3
        assert result.counters["risky_applications"] == 2

    def test_managed_identity(self, collector):
        """Only VMs without a managed identity are flagged."""
        resources = [
            resource("vm-a", "Microsoft.Compute/virtualMachines", properties={"identity": {"type": "SystemAssigned"}}),
            resource("vm-b", "Microsoft.Compute/virtualMachines"),
        ]
        result = _analyze(collector, T.ENTERPRISE_APPLICATIONS, FakeIdentity(), resources)
        flagged = [f.resource_name for f in result.findings if f.finding_type == "VirtualMachineMissingManagedIdentity"]
        assert flagged == ["vm-b"]


class TestUsersAndDevices:
    """Inactive users and unmanaged devices."""

    def test_inactive_users_capped(self, collector):
        """Inactive users are listed longest-inactive first, capped at ten."""
        users = [DirectoryUser(id=f"u{i}", display_name=f"User {i}", days_since_sign_in=100 + i * 10) for i in range(12)]
        devices = [
            ManagedDevice(id="d1", display_name="Laptop 1", is_compliant=False),
            ManagedDevice(id="d2", display_name="Laptop 2"),
        ]
        result = _analyze(collector, T.STALE_USERS_DEVICES, FakeIdentity(users=users, devices=devices))
        inactive = [f for f in result.findings if f.finding_type == "InactiveUser"]
        assert len(inactive) == 10
        assert inactive[0].resource_name == "User 11"
        assert inactive[0].severity == Severity.HIGH
        assert "HighInactiveUserCount" in _types(result)
        assert _types(result).count("NonCompliantDevice") == 1
        assert result.counters["inactive_users"] == 12
        assert result.counters["unmanaged_devices"] == 1


class TestRbac:
    """Privileged role holders."""

    def test_overprivileged_service_principals(self, collector):
        """Owner service principals are overprivileged and lower the RBAC score."""
        principals = [
            Principal(
                id=f"sp{i}", display_name=f"Deployer {i}", principal_type="ServicePrincipal",
                roles=["Owner"], scope="/subscriptions/abc",
            )
            for i in range(3)
        ]
        result = _analyze(collector, T.RESOURCE_IAM_RBAC, FakeIdentity(principals=principals))
        assert _types(result).count("OverprivilegedServicePrincipal") == 3
        assert "RoleAssignmentSummary" in _types(result)
        assert result.counters["overprivileged_assignments"] == 3
        assert result.sub_scores["rbac"] == 70

    def test_privileged_users_reviewed(self, collector):
        """Only the first five privileged users get review findings."""
        principals = [Principal(id=f"u{i}", display_name=f"Admin {i}", roles=["Global Administrator"]) for i in range(7)]
        result = _analyze(collector, T.RESOURCE_IAM_RBAC, FakeIdentity(principals=principals))
        assert _types(result).count("PrivilegedUserReview") == 5
        assert result.counters["overprivileged_assignments"] == 2

    def test_unprivileged_roles_ignored(self, collector):
        """Reader assignments do not count as privileged."""
        principals = [Principal(id="u1", display_name="Reader", roles=["Reader"])]
        result = _analyze(collector, T.RESOURCE_IAM_RBAC, FakeIdentity(principals=principals))
        assert "PrivilegedUserReview" not in _types(result)
        assert result.sub_scores["rbac"] == 100

    def test_resource_group_complexity(self, collector):
        """A resource group with many types is flagged."""
        resources = [resource(f"r{i}", f"Microsoft.Test/type{i}", group="rg-big") for i in range(11)]
        result = _analyze(collector, T.RESOURCE_IAM_RBAC, FakeIdentity(), resources)
        assert "ResourceGroupComplexity" in _types(result)


class TestConditionalAccess:
    """Policy state and MFA coverage."""

    def test_full_mfa_coverage(self, collector):
        """Enabled MFA policies covering everyone score 100."""
        snapshot = ConditionalAccessSnapshot(
            policies=[ConditionalAccessPolicy(id="p1", display_name="Require MFA", requires_mfa=True)],
            total_users=10,
            users_covered_by_mfa=10,
        )
        result = _analyze(collector, T.CONDITIONAL_ACCESS, FakeIdentity(snapshot=snapshot))
        assert result.findings == []
        assert result.sub_scores["conditional_access"] == 100
        assert "conditional_access" not in result.unavailable

    def test_policy_gaps(self, collector):
        """Disabled policies and uncovered users are flagged and score 0."""
        snapshot = ConditionalAccessSnapshot(
            policies=[ConditionalAccessPolicy(id="p1", display_name="Old", state="disabled", requires_mfa=True)],
            total_users=10,
            users_covered_by_mfa=0,
        )
        result = _analyze(collector, T.CONDITIONAL_ACCESS, FakeIdentity(snapshot=snapshot))
        assert sorted(_types(result)) == [
            "ConditionalAccessGap",
            "DisabledConditionalAccessPolicy",
            "UsersWithoutMfaCoverage",
        ]
        assert result.sub_scores["conditional_access"] == 0

    def test_empty_snapshot_is_neutral(self, collector):
        """No policy data scores the neutral 50."""
        result = _analyze(collector, T.CONDITIONAL_ACCESS, FakeIdentity())
        assert result.sub_scores["conditional_access"] == 50
