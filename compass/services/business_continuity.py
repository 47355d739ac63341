"""Business continuity and disaster recovery analyzer."""

from __future__ import annotations

import asyncio

import structlog

from compass.schemas.assessment import AssessmentCategory, AssessmentType
from compass.schemas.findings import CategoryResult, Effort, Finding, Severity
from compass.schemas.inventory import Resource
from compass.services.analysis import AnalysisInputs, fetch_inventory, new_result, raise_if_cancelled
from compass.services.categories import runs
from compass.services.collector import RateLimitedCollector
from compass.services.credentials import AccessMode
from compass.services.scoring import (
    BACKUP_PROFILE,
    CONTINUITY_FULL_WEIGHTS,
    RECOVERY_PROFILE,
    ScoringEngine,
)
from compass.services.sources import ResourceCatalogSource

logger = structlog.get_logger()

T = AssessmentType

VM_TYPE = "microsoft.compute/virtualmachines"
VAULT_TYPE = "microsoft.recoveryservices/vaults"
PROTECTED_ITEM_TYPE = "microsoft.recoveryservices/vaults/backupfabrics/protectioncontainers/protecteditems"
KEY_VAULT_TYPE = "microsoft.keyvault/vaults"
STORAGE_TYPE = "microsoft.storage/storageaccounts"
SQL_DATABASE_TYPE = "microsoft.sql/servers/databases"
FAILOVER_GROUP_TYPE = "microsoft.sql/servers/failovergroups"

GEO_REDUNDANT_SKUS = ("grs", "ragrs", "gzrs", "ragzrs")

# Cross-domain adjustments for a full continuity run
WEAK_BACKUP_THRESHOLD = 50.0
STRONG_BACKUP_THRESHOLD = 80.0
WEAK_BACKUP_NO_DR_PENALTY = 15.0
NO_REPLICATION_PENALTY = 10.0


def _finding(
    category: AssessmentType,
    resource: Resource,
    finding_type: str,
    severity: Severity,
    issue: str,
    recommendation: str,
    effort: Effort = Effort.MEDIUM,
) -> Finding:
    return Finding(
        category=category.value,
        finding_type=finding_type,
        resource_id=resource.id,
        resource_name=resource.name,
        resource_type=resource.type,
        severity=severity,
        issue=issue,
        recommendation=recommendation,
        effort=effort,
    )


def _sku_name(resource: Resource) -> str:
    if resource.sku:
        return resource.sku.lower()
    sku = resource.properties.get("sku")
    if isinstance(sku, dict):
        return str(sku.get("name", "")).lower()
    return ""


def _is_geo_redundant(resource: Resource) -> bool:
    return _sku_name(resource).split("_")[-1] in GEO_REDUNDANT_SKUS


def _is_replicated_item(resource: Resource) -> bool:
    return "replicationprotecteditems" in resource.type_lower


def _has_zone_or_set(resource: Resource) -> bool:
    return bool(resource.prop("availabilitySet") or resource.prop("zones"))


def analyze_backup(resources: list[Resource]) -> tuple[list[Finding], dict[str, float]]:
    findings: list[Finding] = []
    vms = [r for r in resources if r.type_lower == VM_TYPE]
    vaults = [r for r in resources if r.type_lower == VAULT_TYPE]
    key_vaults = [r for r in resources if r.type_lower == KEY_VAULT_TYPE]
    protected_ids = {
        str(r.prop("sourceResourceId", default="")).lower()
        for r in resources
        if r.type_lower == PROTECTED_ITEM_TYPE
    }

    if vms and not vaults:
        anchor = vms[0]
        findings.append(Finding(
            category=T.BACKUP_COVERAGE.value,
            finding_type="NoRecoveryServicesVault",
            resource_id=f"/subscriptions/{anchor.subscription_id}",
            resource_name=anchor.subscription_id or "subscription",
            resource_type="Microsoft.Resources/subscriptions",
            severity=Severity.HIGH,
            issue="No Recovery Services vault exists for workloads that need backup.",
            recommendation="Create a Recovery Services vault and assign backup policies.",
            effort=Effort.MEDIUM,
        ))

    protected = 0
    for vm in vms:
        if vm.id.lower() in protected_ids:
            protected += 1
            continue
        findings.append(_finding(
            T.BACKUP_COVERAGE, vm, "VirtualMachineNotBackedUp", Severity.HIGH,
            "Virtual machine is not protected by any backup policy.",
            "Enable Azure Backup for the virtual machine.",
            Effort.LOW,
        ))

    vault_issues = 0
    for vault in vaults:
        state = str(vault.prop("securitySettings", "softDeleteSettings", "softDeleteState", default="Enabled"))
        if state.lower() == "disabled":
            vault_issues += 1
            findings.append(_finding(
                T.BACKUP_COVERAGE, vault, "VaultSoftDeleteDisabled", Severity.MEDIUM,
                "Soft delete is disabled on the Recovery Services vault.",
                "Enable soft delete so deleted backup data can be recovered.",
                Effort.LOW,
            ))
        restore = str(vault.prop("redundancySettings", "crossRegionRestore", default="Enabled"))
        if restore.lower() == "disabled":
            vault_issues += 1
            findings.append(_finding(
                T.BACKUP_COVERAGE, vault, "VaultCrossRegionRestoreDisabled", Severity.LOW,
                "Cross-region restore is disabled on the vault.",
                "Enable cross-region restore for regional outage recovery.",
                Effort.LOW,
            ))

    for kv in key_vaults:
        if kv.prop("enableSoftDelete") is False:
            findings.append(_finding(
                T.BACKUP_COVERAGE, kv, "KeyVaultSoftDeleteDisabled", Severity.MEDIUM,
                "Key Vault soft delete is disabled.",
                "Enable soft delete on the Key Vault.",
                Effort.LOW,
            ))
        if not kv.prop("enablePurgeProtection"):
            findings.append(_finding(
                T.BACKUP_COVERAGE, kv, "KeyVaultPurgeProtectionDisabled", Severity.MEDIUM,
                "Key Vault purge protection is not enabled.",
                "Enable purge protection to prevent permanent deletion of secrets.",
                Effort.LOW,
            ))

    counters = {
        "backup_applicable": float(len(vms) + len(vaults) + len(key_vaults)),
        "protectable_resources": float(len(vms)),
        "protected_resources": float(protected),
        "backup_vaults": float(len(vaults)),
        "vault_issues": float(vault_issues),
    }
    return findings, counters


def analyze_recovery(resources: list[Resource]) -> tuple[list[Finding], dict[str, float]]:
    findings: list[Finding] = []
    vms = [r for r in resources if r.type_lower == VM_TYPE]
    storage = [r for r in resources if r.type_lower == STORAGE_TYPE]
    databases = [r for r in resources if r.type_lower == SQL_DATABASE_TYPE and r.name.lower() != "master"]
    replicated = [r for r in resources if _is_replicated_item(r)]
    failover_groups = [r for r in resources if r.type_lower == FAILOVER_GROUP_TYPE]

    single_points = 0
    for vm in vms:
        if not _has_zone_or_set(vm):
            single_points += 1
            findings.append(_finding(
                T.RECOVERY_CONFIGURATION, vm, "SinglePointOfFailure", Severity.HIGH,
                "Virtual machine is not in an availability set or availability zone.",
                "Deploy the workload across zones or an availability set.",
                Effort.HIGH,
            ))

    locally_redundant = 0
    for account in storage:
        if _sku_name(account).endswith("_lrs"):
            locally_redundant += 1
            findings.append(_finding(
                T.RECOVERY_CONFIGURATION, account, "LocallyRedundantStorage", Severity.MEDIUM,
                "Storage account only keeps copies within a single datacenter.",
                "Switch to zone- or geo-redundant storage for critical data.",
                Effort.LOW,
            ))

    for database in databases:
        if _sku_name(database) == "basic" or str(database.prop("currentSku", "tier", default="")).lower() == "basic":
            findings.append(_finding(
                T.RECOVERY_CONFIGURATION, database, "SqlBasicTier", Severity.MEDIUM,
                "Database runs on the Basic tier with limited restore and no geo-replication options.",
                "Move the database to a tier that supports geo-replication.",
                Effort.MEDIUM,
            ))

    replication = len(replicated) + len(failover_groups) + sum(1 for s in storage if _is_geo_redundant(s))
    has_dr_plan = bool(replicated or failover_groups)
    critical = vms + storage + databases
    if critical and not has_dr_plan:
        anchor = critical[0]
        findings.append(Finding(
            category=T.RECOVERY_CONFIGURATION.value,
            finding_type="NoDisasterRecoveryPlan",
            resource_id=f"/subscriptions/{anchor.subscription_id}",
            resource_name=anchor.subscription_id or "subscription",
            resource_type="Microsoft.Resources/subscriptions",
            severity=Severity.HIGH,
            issue="No site recovery replication or database failover group protects critical workloads.",
            recommendation="Define a disaster recovery plan with Azure Site Recovery or failover groups.",
            effort=Effort.HIGH,
        ))

    counters = {
        "recovery_applicable": float(len(critical)),
        "has_dr_plan": 1.0 if has_dr_plan else 0.0,
        "single_points_of_failure": float(single_points),
        "locally_redundant_storage": float(locally_redundant),
        "replicated_resources": float(replication),
    }
    return findings, counters


class BusinessContinuityAnalyzer:
    """Scores backup coverage and recovery readiness."""

    category = AssessmentCategory.BUSINESS_CONTINUITY

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
        scores: dict[str, float] = {}

        if runs(inputs.assessment_type, T.BACKUP_COVERAGE):
            raise_if_cancelled(cancel)
            findings, counters = analyze_backup(resources)
            result.findings.extend(findings)
            result.counters.update(counters)
            breakdown = self._engine.breakdown(result, BACKUP_PROFILE)
            scores["backup"] = breakdown.score
            result.sub_scores.update({f"backup.{k}": v for k, v in breakdown.sub_scores.items()})

        if runs(inputs.assessment_type, T.RECOVERY_CONFIGURATION):
            raise_if_cancelled(cancel)
            findings, counters = analyze_recovery(resources)
            result.findings.extend(findings)
            result.counters.update(counters)
            breakdown = self._engine.breakdown(result, RECOVERY_PROFILE)
            scores["recovery"] = breakdown.score
            result.sub_scores.update({f"recovery.{k}": v for k, v in breakdown.sub_scores.items()})

        extra_penalty = 0.0
        if "backup" in scores and "recovery" in scores:
            if scores["backup"] < WEAK_BACKUP_THRESHOLD and not result.counters.get("has_dr_plan"):
                extra_penalty += WEAK_BACKUP_NO_DR_PENALTY
            if (
                scores["backup"] > STRONG_BACKUP_THRESHOLD
                and result.counters.get("recovery_applicable", 0) > 0
                and result.counters.get("replicated_resources", 0) == 0
            ):
                extra_penalty += NO_REPLICATION_PENALTY
        result.details["cross_domain_penalty"] = extra_penalty

        result.score = self._engine.combine(scores, CONTINUITY_FULL_WEIGHTS, extra_penalty)
        log.info("continuity_analysis_completed", findings=len(result.findings), score=result.score)
        return result
