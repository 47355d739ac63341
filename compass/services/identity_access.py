"""Identity and access management analyzer.

With directory access the analyzer inspects applications, users, devices,
privileged role holders and conditional access policies. Without it, only
inventory-derived rules run and each skipped area is reported through a single
"analysis limited" finding.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict

import structlog

from compass.schemas.assessment import AssessmentCategory, AssessmentType
from compass.schemas.findings import CategoryResult, Effort, Finding, Severity
from compass.schemas.inventory import ConditionalAccessSnapshot, Resource
from compass.services.analysis import AnalysisInputs, fetch_inventory, new_result, raise_if_cancelled
from compass.services.categories import runs
from compass.services.collector import RateLimitedCollector
from compass.services.credentials import AccessMode
from compass.services.scoring import IDENTITY_PROFILE, ScoringEngine
from compass.services.sources import IdentityContextSource, ResourceCatalogSource

logger = structlog.get_logger()

T = AssessmentType

PRIVILEGED_ROLES = {
    "owner",
    "global administrator",
    "privileged role administrator",
    "user access administrator",
}
BROAD_SCOPES = ("/", "/subscriptions")
INACTIVE_HIGH_SEVERITY_DAYS = 180
HIGH_INACTIVE_USER_COUNT = 10
MAX_RESOURCE_TYPES_PER_GROUP = 10

EFFORT_BY_FINDING: dict[str, Effort] = {
    "ApplicationExcessivePermissions": Effort.HIGH,
    "OverprivilegedServicePrincipal": Effort.HIGH,
    "OverprivilegedUser": Effort.HIGH,
    "ApplicationExpiredCredentials": Effort.MEDIUM,
    "CustomRoleUsage": Effort.MEDIUM,
    "ConditionalAccessAnalysisLimited": Effort.LOW,
}

MANAGED_IDENTITY_TYPES = {
    "microsoft.web/sites": "AppServiceMissingManagedIdentity",
    "microsoft.compute/virtualmachines": "VirtualMachineMissingManagedIdentity",
}


def _finding(
    category: AssessmentType,
    finding_type: str,
    severity: Severity,
    resource_id: str,
    resource_name: str,
    issue: str,
    recommendation: str,
    resource_type: str = "",
) -> Finding:
    return Finding(
        category=category.value,
        finding_type=finding_type,
        resource_id=resource_id,
        resource_name=resource_name,
        resource_type=resource_type,
        severity=severity,
        issue=issue,
        recommendation=recommendation,
        effort=EFFORT_BY_FINDING.get(finding_type, Effort.MEDIUM),
    )


def _limited(category: AssessmentType, finding_type: str, severity: Severity, area: str, tenant_id: str) -> Finding:
    return _finding(
        category, finding_type, severity, tenant_id, "Directory",
        f"{area} could not be analysed because directory data was not accessible.",
        "Grant delegated directory read access to enable the full analysis.",
        resource_type="Directory",
    )


def has_managed_identity(resource: Resource) -> bool:
    identity = resource.properties.get("identity") or {}
    if not isinstance(identity, dict):
        return False
    return str(identity.get("type", "none")).lower() not in ("", "none")


def managed_identity_findings(resources: list[Resource]) -> list[Finding]:
    findings = []
    for resource in resources:
        finding_type = MANAGED_IDENTITY_TYPES.get(resource.type_lower)
        if finding_type and not has_managed_identity(resource):
            findings.append(_finding(
                T.ENTERPRISE_APPLICATIONS, finding_type, Severity.MEDIUM, resource.id, resource.name,
                "Resource does not use a managed identity.",
                "Enable a system- or user-assigned managed identity instead of stored secrets.",
                resource_type=resource.type,
            ))
    return findings


def resource_group_complexity_findings(resources: list[Resource]) -> list[Finding]:
    types_by_group: dict[str, set[str]] = defaultdict(set)
    for resource in resources:
        if resource.resource_group:
            types_by_group[resource.resource_group].add(resource.type_lower)
    findings = []
    for group, types in sorted(types_by_group.items()):
        if len(types) > MAX_RESOURCE_TYPES_PER_GROUP:
            findings.append(_finding(
                T.RESOURCE_IAM_RBAC, "ResourceGroupComplexity", Severity.MEDIUM,
                group, group,
                f"Resource group contains {len(types)} distinct resource types.",
                "Split the group by workload so access can be granted narrowly.",
                resource_type="Microsoft.Resources/resourceGroups",
            ))
    return findings


class IdentityAccessAnalyzer:
    """Scores identity hygiene: applications, users and devices, RBAC, conditional access."""

    category = AssessmentCategory.IDENTITY_ACCESS_MANAGEMENT

    def __init__(
        self,
        catalog: ResourceCatalogSource,
        identity: IdentityContextSource | None,
        collector: RateLimitedCollector,
        engine: ScoringEngine | None = None,
    ) -> None:
        self._catalog = catalog
        self._identity = identity
        self._collector = collector
        self._engine = engine or ScoringEngine()

    async def _has_directory_access(self, inputs: AnalysisInputs, mode: AccessMode) -> bool:
        if mode != AccessMode.ENHANCED or self._identity is None:
            return False
        return await self._collector.fetch(
            "identity_access_test", self._identity.test_access, inputs.tenant, empty=lambda: False
        )

    async def analyze(
        self,
        inputs: AnalysisInputs,
        mode: AccessMode,
        cancel: asyncio.Event | None = None,
    ) -> CategoryResult:
        log = logger.bind(assessment_id=inputs.assessment_id, assessment_type=inputs.assessment_type.value)
        result = new_result(inputs, mode)
        atype = inputs.assessment_type

        resources = await fetch_inventory(self._collector, self._catalog, inputs, mode)
        directory = await self._has_directory_access(inputs, mode)
        if not directory:
            log.warning("identity_directory_unavailable", access_mode=mode.value)
        result.details["directory_access"] = directory
        counters = result.counters
        counters["applicable_items"] = float(len(resources))
        tenant_id = inputs.tenant.tenant_id or inputs.tenant.organization_id

        if runs(atype, T.ENTERPRISE_APPLICATIONS):
            raise_if_cancelled(cancel)
            await self._applications(inputs, resources, directory, result, tenant_id)

        if runs(atype, T.STALE_USERS_DEVICES):
            raise_if_cancelled(cancel)
            await self._users_and_devices(inputs, directory, result, tenant_id)

        if runs(atype, T.RESOURCE_IAM_RBAC):
            raise_if_cancelled(cancel)
            await self._rbac(inputs, resources, directory, result, tenant_id)

        snapshot: ConditionalAccessSnapshot | None = None
        if runs(atype, T.CONDITIONAL_ACCESS):
            raise_if_cancelled(cancel)
            snapshot = await self._conditional_access(inputs, directory, result, tenant_id)
        if snapshot is None or (not snapshot.policies and snapshot.total_users == 0):
            result.unavailable.add("conditional_access")
        else:
            counters["conditional_access_coverage"] = round(snapshot.coverage_percentage, 2)

        breakdown = self._engine.breakdown(result, IDENTITY_PROFILE)
        result.sub_scores.update(breakdown.sub_scores)
        result.score = breakdown.score
        log.info("identity_analysis_completed", findings=len(result.findings), score=result.score)
        return result

    async def _applications(
        self,
        inputs: AnalysisInputs,
        resources: list[Resource],
        directory: bool,
        result: CategoryResult,
        tenant_id: str,
    ) -> None:
        identity_findings = managed_identity_findings(resources)
        result.findings.extend(identity_findings)
        app_services = [r for r in resources if r.type_lower == "microsoft.web/sites"]
        total = len(app_services)
        risky = sum(1 for f in identity_findings if f.finding_type == "AppServiceMissingManagedIdentity")

        if directory:
            applications = await self._collector.fetch(
                "identity_applications", self._identity.fetch_applications, inputs.tenant
            )
            for app in applications:
                total += 1
                app_risky = False
                if app.expired_credential_count:
                    app_risky = True
                    result.findings.append(_finding(
                        T.ENTERPRISE_APPLICATIONS, "ApplicationExpiredCredentials", Severity.HIGH,
                        app.id, app.display_name,
                        f"Application has {app.expired_credential_count} expired credential(s).",
                        "Remove expired secrets and certificates and rotate active ones.",
                        resource_type="Application",
                    ))
                if app.high_privilege_permissions:
                    app_risky = True
                    result.findings.append(_finding(
                        T.ENTERPRISE_APPLICATIONS, "ApplicationExcessivePermissions", Severity.HIGH,
                        app.id, app.display_name,
                        "Application holds high-privilege permissions: "
                        + ", ".join(app.high_privilege_permissions) + ".",
                        "Reduce the application's permissions to what it actually uses.",
                        resource_type="Application",
                    ))
                if app.credential_count == 0:
                    result.findings.append(_finding(
                        T.ENTERPRISE_APPLICATIONS, "ApplicationWithoutCredentials", Severity.MEDIUM,
                        app.id, app.display_name,
                        "Application has no credentials configured.",
                        "Remove the registration if unused, or configure a managed credential.",
                        resource_type="Application",
                    ))
                risky += app_risky
        else:
            result.findings.append(_limited(
                T.ENTERPRISE_APPLICATIONS, "EnterpriseApplicationAnalysisLimited", Severity.LOW,
                "Enterprise application credentials and permissions", tenant_id,
            ))

        result.counters["total_applications"] = float(total)
        result.counters["risky_applications"] = float(risky)
        result.counters["applicable_items"] += total

    async def _users_and_devices(
        self, inputs: AnalysisInputs, directory: bool, result: CategoryResult, tenant_id: str
    ) -> None:
        if not directory:
            result.findings.append(_limited(
                T.STALE_USERS_DEVICES, "UserDeviceAnalysisLimited", Severity.LOW,
                "User sign-in activity and device compliance", tenant_id,
            ))
            return

        users = await self._collector.fetch("identity_users", self._identity.fetch_inactive_users, inputs.tenant)
        devices = await self._collector.fetch("identity_devices", self._identity.fetch_devices, inputs.tenant)
        ranked = sorted(users, key=lambda u: u.days_since_sign_in or 0, reverse=True)
        for user in ranked[:10]:
            days = user.days_since_sign_in or 0
            result.findings.append(_finding(
                T.STALE_USERS_DEVICES, "InactiveUser",
                Severity.HIGH if days > INACTIVE_HIGH_SEVERITY_DAYS else Severity.MEDIUM,
                user.id, user.display_name,
                f"User has not signed in for {days} days.",
                "Disable or remove the account if it is no longer needed.",
                resource_type="User",
            ))
        if len(users) > HIGH_INACTIVE_USER_COUNT:
            result.findings.append(_finding(
                T.STALE_USERS_DEVICES, "HighInactiveUserCount", Severity.MEDIUM,
                tenant_id, "Directory",
                f"{len(users)} users are inactive.",
                "Introduce a periodic access review to remove stale accounts.",
                resource_type="Directory",
            ))
        unmanaged = [d for d in devices if not d.is_compliant or not d.is_managed]
        for device in unmanaged:
            result.findings.append(_finding(
                T.STALE_USERS_DEVICES, "NonCompliantDevice", Severity.MEDIUM,
                device.id, device.display_name,
                "Device is unmanaged or does not meet compliance policies.",
                "Enrol the device in management or block its access.",
                resource_type="Device",
            ))
        result.counters["inactive_users"] = float(len(users))
        result.counters["unmanaged_devices"] = float(len(unmanaged))
        result.counters["applicable_items"] += len(users) + len(devices)

    async def _rbac(
        self,
        inputs: AnalysisInputs,
        resources: list[Resource],
        directory: bool,
        result: CategoryResult,
        tenant_id: str,
    ) -> None:
        result.findings.extend(resource_group_complexity_findings(resources))
        if not directory:
            result.findings.append(_limited(
                T.RESOURCE_IAM_RBAC, "RbacAnalysisLimited", Severity.LOW,
                "Role assignments and privileged principals", tenant_id,
            ))
            return

        principals = await self._collector.fetch(
            "identity_principals", self._identity.fetch_privileged_principals, inputs.tenant
        )
        overprivileged = 0
        privileged_users = []
        for principal in principals:
            privileged = [r for r in principal.roles if r.lower() in PRIVILEGED_ROLES]
            if not privileged:
                continue
            if principal.is_service_principal and principal.scope.lower().startswith(BROAD_SCOPES):
                overprivileged += 1
                result.findings.append(_finding(
                    T.RESOURCE_IAM_RBAC, "OverprivilegedServicePrincipal", Severity.HIGH,
                    principal.id, principal.display_name,
                    "Service principal holds " + ", ".join(privileged) + f" at scope {principal.scope}.",
                    "Scope the assignment down and grant the least privileged role.",
                    resource_type="ServicePrincipal",
                ))
            elif not principal.is_service_principal:
                privileged_users.append((principal, privileged))

        if len(privileged_users) > 5:
            overprivileged += len(privileged_users) - 5
        for principal, roles in privileged_users[:5]:
            result.findings.append(_finding(
                T.RESOURCE_IAM_RBAC, "PrivilegedUserReview", Severity.MEDIUM,
                principal.id, principal.display_name,
                "User holds privileged roles: " + ", ".join(roles) + ".",
                "Confirm the assignment is still required or move it to just-in-time access.",
                resource_type="User",
            ))
        if principals:
            result.findings.append(_finding(
                T.RESOURCE_IAM_RBAC, "RoleAssignmentSummary", Severity.LOW,
                tenant_id, "Directory",
                f"{len(principals)} principals hold privileged roles.",
                "Review privileged role membership regularly.",
                resource_type="Directory",
            ))
        result.counters["overprivileged_assignments"] = float(overprivileged)
        result.counters["applicable_items"] += len(principals)

    async def _conditional_access(
        self, inputs: AnalysisInputs, directory: bool, result: CategoryResult, tenant_id: str
    ) -> ConditionalAccessSnapshot | None:
        if not directory:
            result.findings.append(_limited(
                T.CONDITIONAL_ACCESS, "ConditionalAccessAnalysisLimited", Severity.MEDIUM,
                "Conditional access policies", tenant_id,
            ))
            result.findings.append(_finding(
                T.CONDITIONAL_ACCESS, "ConditionalAccessBestPractices", Severity.LOW,
                tenant_id, "Directory",
                "Conditional access configuration could not be verified.",
                "Require MFA for all users and block legacy authentication.",
                resource_type="Directory",
            ))
            return None

        snapshot = await self._collector.fetch(
            "identity_conditional_access",
            self._identity.fetch_conditional_access,
            inputs.tenant,
            empty=ConditionalAccessSnapshot,
        )
        for policy in snapshot.policies:
            if not policy.is_enabled:
                result.findings.append(_finding(
                    T.CONDITIONAL_ACCESS, "DisabledConditionalAccessPolicy", Severity.MEDIUM,
                    policy.id, policy.display_name,
                    f"Policy is in state '{policy.state}'.",
                    "Enable the policy or delete it if it is obsolete.",
                    resource_type="ConditionalAccessPolicy",
                ))
        uncovered = snapshot.total_users - snapshot.users_covered_by_mfa
        if uncovered > 0:
            result.findings.append(_finding(
                T.CONDITIONAL_ACCESS, "UsersWithoutMfaCoverage", Severity.HIGH,
                tenant_id, "Directory",
                f"{uncovered} of {snapshot.total_users} users are not covered by an MFA policy.",
                "Extend MFA-enforcing policies to all users.",
                resource_type="Directory",
            ))
        if snapshot.total_users and not any(p.is_enabled and p.requires_mfa for p in snapshot.policies):
            result.findings.append(_finding(
                T.CONDITIONAL_ACCESS, "ConditionalAccessGap", Severity.HIGH,
                tenant_id, "Directory",
                "No enabled conditional access policy requires MFA.",
                "Create a policy requiring MFA for all users.",
                resource_type="Directory",
            ))
        result.counters["applicable_items"] += len(snapshot.policies)
        return snapshot
