"""Resource relationship analysis.

Produces descriptive findings only; they are persisted with the assessment
but never affect its score.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from typing import Any

from compass.schemas.findings import Effort, Finding, Severity
from compass.schemas.inventory import Resource

CATEGORY = "Dependency"

_RESOURCE_GROUP_REF = re.compile(r"/resourcegroups/([^/]+)/", re.IGNORECASE)


def _walk_strings(node: Any) -> Iterator[str]:
    if isinstance(node, str):
        yield node
    elif isinstance(node, dict):
        for value in node.values():
            yield from _walk_strings(value)
    elif isinstance(node, list):
        for value in node:
            yield from _walk_strings(value)


def referenced_resource_groups(resource: Resource) -> set[str]:
    """Resource groups named by resource ids inside the resource's properties."""
    groups = set()
    for value in _walk_strings(resource.properties):
        for match in _RESOURCE_GROUP_REF.finditer(value):
            groups.add(match.group(1).lower())
    return groups


def _descriptive(resource: Resource, finding_type: str, issue: str, recommendation: str) -> Finding:
    return Finding(
        category=CATEGORY,
        finding_type=finding_type,
        resource_id=resource.id,
        resource_name=resource.name,
        resource_type=resource.type,
        severity=Severity.LOW,
        issue=issue,
        recommendation=recommendation,
        effort=Effort.LOW,
        scored=False,
    )


def analyze_dependencies(resources: list[Resource]) -> tuple[list[Finding], dict[str, Any]]:
    findings: list[Finding] = []
    cross_group_links = 0

    for resource in resources:
        rtype = resource.type_lower
        if rtype == "microsoft.compute/disks":
            if resource.prop("diskState", default="").lower() == "unattached" or (
                not resource.prop("managedBy") and "diskState" not in resource.properties
            ):
                findings.append(_descriptive(
                    resource, "OrphanedDisk",
                    "Managed disk is not attached to any virtual machine.",
                    "Delete the disk or attach it to a workload that needs it.",
                ))
        elif rtype == "microsoft.network/publicipaddresses":
            if not resource.prop("ipConfiguration"):
                findings.append(_descriptive(
                    resource, "UnassociatedPublicIp",
                    "Public IP address is not associated with any resource.",
                    "Release the address if it is no longer required.",
                ))
        elif rtype == "microsoft.network/networkinterfaces":
            if not resource.prop("virtualMachine"):
                findings.append(_descriptive(
                    resource, "DetachedNetworkInterface",
                    "Network interface is not attached to a virtual machine.",
                    "Remove the interface or attach it to a virtual machine.",
                ))

        own_group = resource.resource_group.lower()
        foreign = sorted(g for g in referenced_resource_groups(resource) if g != own_group)
        if own_group and foreign:
            cross_group_links += len(foreign)
            findings.append(_descriptive(
                resource, "CrossResourceGroupDependency",
                "Resource depends on resources in other groups: " + ", ".join(foreign) + ".",
                "Keep tightly coupled resources in the same resource group where practical.",
            ))

    details = {
        "orphaned_resources": sum(1 for f in findings if f.finding_type != "CrossResourceGroupDependency"),
        "cross_resource_group_links": cross_group_links,
    }
    return findings, details
