"""Tagging rules — tag coverage, required tags and tag hygiene."""

from __future__ import annotations

from collections import Counter, defaultdict
from typing import Any

from compass.schemas.findings import Effort, Finding, Severity
from compass.schemas.inventory import ClientPreferenceOverride, Resource

CATEGORY = "Tagging"

DEFAULT_REQUIRED_TAGS = ["Environment", "Owner", "Project", "CostCenter", "Department"]

# Resource types that must carry the required tags
TAG_REQUIRED_TYPES = {
    "microsoft.compute/virtualmachines",
    "microsoft.storage/storageaccounts",
    "microsoft.sql/servers",
    "microsoft.web/sites",
    "microsoft.keyvault/vaults",
    "microsoft.network/virtualnetworks",
}

# A tag counts as missing when fewer resources than this share carry it
MISSING_TAG_THRESHOLD = 0.3


def _finding(
    resource: Resource,
    finding_type: str,
    severity: Severity,
    issue: str,
    recommendation: str,
    effort: Effort = Effort.LOW,
) -> Finding:
    return Finding(
        category=CATEGORY,
        finding_type=finding_type,
        resource_id=resource.id,
        resource_name=resource.name,
        resource_type=resource.type,
        severity=severity,
        issue=issue,
        recommendation=recommendation,
        effort=effort,
    )


def _has_tag(resource: Resource, tag: str) -> bool:
    wanted = tag.lower()
    return any(k.lower() == wanted for k in resource.tags)


def required_tag_coverage(resources: list[Resource], required: list[str]) -> float:
    """Average share of required tags present on each resource, as a percentage."""
    if not resources or not required:
        return 100.0
    present = sum(sum(1 for tag in required if _has_tag(r, tag)) for r in resources)
    return present / (len(resources) * len(required)) * 100


def missing_tags(resources: list[Resource], required: list[str]) -> list[str]:
    """Required tags carried by less than the threshold share of resources."""
    if not resources:
        return []
    result = []
    for tag in required:
        carried = sum(1 for r in resources if _has_tag(r, tag))
        if carried / len(resources) < MISSING_TAG_THRESHOLD:
            result.append(tag)
    return result


def _inconsistent_keys(resources: list[Resource]) -> dict[str, set[str]]:
    """Tag keys that appear with more than one casing across the inventory."""
    spellings: dict[str, set[str]] = defaultdict(set)
    for resource in resources:
        for key in resource.tags:
            spellings[key.lower()].add(key)
    return {k: v for k, v in spellings.items() if len(v) > 1}


def analyze_tagging(
    resources: list[Resource],
    preferences: ClientPreferenceOverride | None = None,
) -> tuple[list[Finding], dict[str, float], dict[str, Any]]:
    """Run the tagging rules over an inventory.

    Returns the findings, the scoring counters and descriptive details.
    """
    use_preferences = preferences is not None and bool(preferences.required_tags)
    required = list(preferences.required_tags) if use_preferences else list(DEFAULT_REQUIRED_TAGS)
    enforce = bool(preferences.enforce_tag_compliance) if preferences else False

    findings: list[Finding] = []
    inconsistent = _inconsistent_keys(resources)
    reported_inconsistent: set[str] = set()

    for resource in resources:
        if resource.type_lower in TAG_REQUIRED_TYPES:
            if not resource.has_tags:
                findings.append(_finding(
                    resource, "NoTags", Severity.HIGH,
                    "Resource has no tags.",
                    "Apply the required tags: " + ", ".join(required) + ".",
                    Effort.LOW,
                ))
            else:
                absent = [tag for tag in required if not _has_tag(resource, tag)]
                if absent:
                    if use_preferences:
                        findings.append(_finding(
                            resource, "MissingClientRequiredTags",
                            Severity.HIGH if enforce else Severity.MEDIUM,
                            "Resource is missing client-required tags: " + ", ".join(absent) + ".",
                            "Add the client-required tags: " + ", ".join(absent) + ".",
                        ))
                    else:
                        findings.append(_finding(
                            resource, "MissingRequiredTags",
                            Severity.HIGH if len(absent) > 2 else Severity.MEDIUM,
                            "Resource is missing required tags: " + ", ".join(absent) + ".",
                            "Add the missing tags: " + ", ".join(absent) + ".",
                        ))

        empty = [k for k, v in resource.tags.items() if not str(v).strip()]
        if empty:
            findings.append(_finding(
                resource, "EmptyTagValues", Severity.MEDIUM,
                "Tags with empty values: " + ", ".join(sorted(empty)) + ".",
                "Populate or remove the empty tags.",
            ))

        for key in resource.tags:
            lowered = key.lower()
            if lowered in inconsistent and lowered not in reported_inconsistent:
                reported_inconsistent.add(lowered)
                spellings = ", ".join(sorted(inconsistent[lowered]))
                findings.append(_finding(
                    resource, "InconsistentTagNaming", Severity.LOW,
                    f"Tag key '{lowered}' is spelled inconsistently: {spellings}.",
                    "Standardise tag key casing across the environment.",
                ))

    tagged = sum(1 for r in resources if r.has_tags)
    coverage = required_tag_coverage(resources, required)
    counters = {
        "tagging_total": float(len(resources)),
        "tagged_resources": float(tagged),
        "required_tag_coverage": round(coverage, 2),
        "enforce_tag_compliance": 1.0 if enforce else 0.0,
    }
    if use_preferences:
        counters["client_required_tag_coverage"] = round(coverage, 2)

    key_usage = Counter(k for r in resources for k in r.tags)
    details = {
        "required_tags": required,
        "missing_tags": missing_tags(resources, required),
        "tag_usage": dict(key_usage.most_common(20)),
        "uses_client_preferences": use_preferences,
    }
    return findings, counters, details
