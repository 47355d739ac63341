"""Tests for the business continuity analyzer."""

from __future__ import annotations

import asyncio

from compass.schemas.assessment import AssessmentType
from compass.services.business_continuity import BusinessContinuityAnalyzer, analyze_backup, analyze_recovery
from compass.services.credentials import AccessMode
from tests.fakes import FakeCatalog, inputs, resource

T = AssessmentType

VM = "Microsoft.Compute/virtualMachines"
VAULT = "Microsoft.RecoveryServices/vaults"
PROTECTED = "Microsoft.RecoveryServices/vaults/backupFabrics/protectionContainers/protectedItems"
KEY_VAULT = "Microsoft.KeyVault/vaults"
STORAGE = "Microsoft.Storage/storageAccounts"
FAILOVER_GROUP = "Microsoft.Sql/servers/failoverGroups"


def _types(findings):
    return [f.finding_type for f in findings]


# ─── Backup ──────────────────────────────────────────────────────────────────

class TestBackupRules:
    """Backup coverage and vault configuration."""

    def test_vm_without_vault(self):
        """A VM with no vault is unprotected and the missing vault is reported."""
        findings, counters = analyze_backup([resource("vm-a", VM)])
        assert sorted(_types(findings)) == ["NoRecoveryServicesVault", "VirtualMachineNotBackedUp"]
        assert counters["protected_resources"] == 0

    def test_protected_vm(self):
        """A protected item matches its VM regardless of id casing."""
        vm = resource("vm-a", VM)
        item = resource("item-a", PROTECTED, properties={"sourceResourceId": vm.id.upper()})
        findings, counters = analyze_backup([vm, resource("rsv-a", VAULT), item])
        assert findings == []
        assert counters["protected_resources"] == 1

    def test_vault_settings(self):
        """Disabled soft delete and cross-region restore are both flagged."""
        vault = resource("rsv-a", VAULT, properties={
            "securitySettings": {"softDeleteSettings": {"softDeleteState": "Disabled"}},
            "redundancySettings": {"crossRegionRestore": "Disabled"},
        })
        findings, counters = analyze_backup([vault])
        assert sorted(_types(findings)) == ["VaultCrossRegionRestoreDisabled", "VaultSoftDeleteDisabled"]
        assert counters["vault_issues"] == 2

    def test_key_vault_protection(self):
        """Key vaults without soft delete or purge protection are flagged."""
        kv = resource("kv-a", KEY_VAULT, properties={"enableSoftDelete": False})
        findings, _ = analyze_backup([kv])
        assert sorted(_types(findings)) == ["KeyVaultPurgeProtectionDisabled", "KeyVaultSoftDeleteDisabled"]


# ─── Recovery ────────────────────────────────────────────────────────────────

class TestRecoveryRules:
    """Redundancy and disaster recovery readiness."""

    def test_single_vm_without_dr(self):
        """A lone unzoned VM is a single point of failure with no DR plan."""
        findings, counters = analyze_recovery([resource("vm-a", VM)])
        assert sorted(_types(findings)) == ["NoDisasterRecoveryPlan", "SinglePointOfFailure"]
        assert counters["has_dr_plan"] == 0

    def test_zoned_vm_with_failover_group(self):
        """Zones plus a failover group satisfy recovery checks."""
        resources = [resource("vm-a", VM, properties={"zones": ["1"]}), resource("fog-a", FAILOVER_GROUP)]
        findings, counters = analyze_recovery(resources)
        assert findings == []
        assert counters["has_dr_plan"] == 1

    def test_locally_redundant_storage(self):
        """LRS storage is flagged and not counted as replicated."""
        findings, counters = analyze_recovery([resource("sta", STORAGE, sku="Standard_LRS")])
        assert "LocallyRedundantStorage" in _types(findings)
        assert counters["replicated_resources"] == 0

    def test_geo_redundant_storage_counts_as_replication(self):
        """GRS storage counts as a replicated resource."""
        _, counters = analyze_recovery([resource("sta", STORAGE, sku="Standard_GRS")])
        assert counters["replicated_resources"] == 1


# ─── Analyzer ────────────────────────────────────────────────────────────────

class TestBusinessContinuityAnalyzer:
    """Sub-analysis selection and cross-domain penalties."""

    def _analyze(self, collector, resources, assessment_type):
        analyzer = BusinessContinuityAnalyzer(FakeCatalog(resources), collector)
        return asyncio.run(analyzer.analyze(inputs(assessment_type), AccessMode.DEFAULT))

    def test_backup_only(self, collector):
        """BackupCoverage only produces backup findings and sub-scores."""
        result = self._analyze(collector, [resource("vm-a", VM)], T.BACKUP_COVERAGE)
        assert {f.category for f in result.findings} == {"BackupCoverage"}
        assert all(k.startswith("backup.") for k in result.sub_scores)
        # coverage 0, no vault, two High findings
        assert result.score == 0

    def test_empty_inventory_scores_perfect(self, collector):
        """Nothing to protect scores 100 with no cross-domain penalty."""
        result = self._analyze(collector, [], T.BUSINESS_CONTINUITY_FULL)
        assert result.score == 100
        assert result.details["cross_domain_penalty"] == 0

    def test_weak_backup_without_dr_penalised(self, collector):
        """Weak backup and no DR plan add the larger cross-domain penalty."""
        result = self._analyze(collector, [resource("vm-a", VM)], T.BUSINESS_CONTINUITY_FULL)
        assert result.details["cross_domain_penalty"] == 15
        assert result.score == 0

    def test_strong_backup_without_replication_penalised(self, collector):
        """Good backup without replication adds the smaller penalty."""
        vm = resource("vm-a", VM, properties={"zones": ["1"]})
        resources = [
            vm,
            resource("rsv-a", VAULT),
            resource("item-a", PROTECTED, properties={"sourceResourceId": vm.id}),
        ]
        result = self._analyze(collector, resources, T.BUSINESS_CONTINUITY_FULL)
        assert result.details["cross_domain_penalty"] == 10
        # backup 100, recovery 60 - 8 = 52
        assert result.score == round(100 * 0.6 + 52 * 0.4 - 10, 2)
