"""Naming convention rules for cloud resources."""

from __future__ import annotations

import re
from collections import Counter
from typing import Any

from compass.schemas.findings import Effort, Finding, Severity
from compass.schemas.inventory import ClientPreferenceOverride, Resource

CATEGORY = "NamingConvention"

# Recommended abbreviations per resource type
TYPE_PREFIXES: dict[str, str] = {
    "microsoft.compute/virtualmachines": "vm",
    "microsoft.compute/disks": "disk",
    "microsoft.storage/storageaccounts": "st",
    "microsoft.keyvault/vaults": "kv",
    "microsoft.sql/servers": "sql",
    "microsoft.sql/servers/databases": "sqldb",
    "microsoft.web/sites": "app",
    "microsoft.web/serverfarms": "asp",
    "microsoft.network/virtualnetworks": "vnet",
    "microsoft.network/networksecuritygroups": "nsg",
    "microsoft.network/publicipaddresses": "pip",
    "microsoft.network/networkinterfaces": "nic",
    "microsoft.network/loadbalancers": "lb",
    "microsoft.network/applicationgateways": "agw",
    "microsoft.containerservice/managedclusters": "aks",
}

MAX_LENGTHS: dict[str, int] = {
    "microsoft.storage/storageaccounts": 24,
    "microsoft.keyvault/vaults": 24,
    "microsoft.compute/virtualmachines": 64,
    "microsoft.sql/servers": 63,
    "microsoft.web/sites": 60,
}
DEFAULT_MAX_LENGTH = 80

ALLOWED_CHARACTERS: dict[str, re.Pattern[str]] = {
    "microsoft.storage/storageaccounts": re.compile(r"^[a-z0-9]+$"),
}
DEFAULT_ALLOWED_CHARACTERS = re.compile(r"^[A-Za-z0-9][A-Za-z0-9\-_.]*$")

# Resources created by the platform itself, not subject to naming rules
SYSTEM_NAME_PREFIXES = ("networkwatcher", "defaultresourcegroup", "aks-agentpool", "mc_")
SYSTEM_TYPES = {
    "microsoft.insights/actiongroups",
    "microsoft.alertsmanagement/smartdetectoralertrules",
    "microsoft.network/networkwatchers",
}

EFFORT_BY_FINDING: dict[str, Effort] = {
    "InvalidCharacters": Effort.HIGH,
    "ClientPreferenceViolation": Effort.MEDIUM,
    "MissingRequiredElement": Effort.HIGH,
    "MissingResourceTypePrefix": Effort.MEDIUM,
    "NameTooLong": Effort.MEDIUM,
    "InconsistentPattern": Effort.LOW,
}

DEFAULT_ENVIRONMENT_TOKENS = ("dev", "test", "tst", "qa", "uat", "stg", "staging", "prod", "prd")


def is_system_resource(resource: Resource) -> bool:
    name = resource.name.lower()
    return resource.type_lower in SYSTEM_TYPES or name.startswith(SYSTEM_NAME_PREFIXES)


def detect_pattern(name: str) -> str:
    """Classify a name by its casing and separator style."""
    if "-" in name and "_" not in name:
        return "kebab-case" if name == name.lower() else "mixed"
    if "_" in name and "-" not in name:
        return "snake_case" if name == name.lower() else "mixed"
    if "-" in name or "_" in name or "." in name:
        return "mixed"
    if name == name.lower():
        return "lowercase"
    if name[:1].isupper():
        return "PascalCase"
    return "camelCase"


def _tokens(name: str) -> list[str]:
    return [t for t in re.split(r"[-_.]", name.lower()) if t]


def has_environment_indicator(name: str, indicators: tuple[str, ...] | list[str]) -> bool:
    tokens = _tokens(name)
    lowered = name.lower()
    return any(ind in tokens for ind in indicators) or any(
        lowered.endswith(ind) or lowered.startswith(ind) for ind in indicators
    )


def has_type_prefix(resource: Resource) -> bool:
    prefix = TYPE_PREFIXES.get(resource.type_lower)
    if prefix is None:
        return True
    tokens = _tokens(resource.name)
    if tokens and (tokens[0] == prefix or tokens[-1] == prefix):
        return True
    # Storage accounts cannot use separators
    return resource.name.lower().startswith(prefix)


def _finding(resource: Resource, finding_type: str, severity: Severity, issue: str, recommendation: str) -> Finding:
    return Finding(
        category=CATEGORY,
        finding_type=finding_type,
        resource_id=resource.id,
        resource_name=resource.name,
        resource_type=resource.type,
        severity=severity,
        issue=issue,
        recommendation=recommendation,
        effort=EFFORT_BY_FINDING.get(finding_type, Effort.MEDIUM),
    )


def check_resource(
    resource: Resource,
    dominant_pattern: str | None,
    preferences: ClientPreferenceOverride | None = None,
) -> list[Finding]:
    """Apply every naming rule to one resource."""
    findings: list[Finding] = []
    rtype = resource.type_lower
    name = resource.name

    allowed = ALLOWED_CHARACTERS.get(rtype, DEFAULT_ALLOWED_CHARACTERS)
    if not allowed.match(name):
        findings.append(_finding(
            resource, "InvalidCharacters", Severity.MEDIUM,
            f"Name '{name}' contains characters not allowed for {resource.type}.",
            "Rename the resource using only the characters permitted for its type.",
        ))

    max_length = MAX_LENGTHS.get(rtype, DEFAULT_MAX_LENGTH)
    if len(name) > max_length:
        findings.append(_finding(
            resource, "NameTooLong", Severity.MEDIUM,
            f"Name is {len(name)} characters long; the limit for this type is {max_length}.",
            f"Shorten the name to at most {max_length} characters.",
        ))

    if not has_type_prefix(resource):
        prefix = TYPE_PREFIXES[rtype]
        findings.append(_finding(
            resource, "MissingResourceTypePrefix", Severity.LOW,
            f"Name does not carry the '{prefix}' abbreviation for its resource type.",
            f"Prefix the name with '{prefix}' so the resource type is recognisable.",
        ))

    pattern = detect_pattern(name)
    if preferences and preferences.allowed_naming_patterns:
        if pattern not in preferences.allowed_naming_patterns:
            allowed_list = ", ".join(preferences.allowed_naming_patterns)
            findings.append(_finding(
                resource, "ClientPreferenceViolation", Severity.MEDIUM,
                f"Name uses {pattern}, which is not one of the client's patterns ({allowed_list}).",
                f"Rename the resource to follow one of: {allowed_list}.",
            ))
    elif dominant_pattern and pattern != dominant_pattern and rtype not in ALLOWED_CHARACTERS:
        findings.append(_finding(
            resource, "InconsistentPattern", Severity.LOW,
            f"Name uses {pattern} while most resources use {dominant_pattern}.",
            f"Align the name with the prevailing {dominant_pattern} convention.",
        ))

    if preferences and preferences.require_environment_indicator:
        if not has_environment_indicator(name, preferences.environment_indicators):
            findings.append(_finding(
                resource, "MissingRequiredElement", Severity.MEDIUM,
                "Name does not include a required environment indicator.",
                "Add one of: " + ", ".join(preferences.environment_indicators) + ".",
            ))

    return findings


def analyze_naming(
    resources: list[Resource],
    preferences: ClientPreferenceOverride | None = None,
) -> tuple[list[Finding], dict[str, float], dict[str, Any]]:
    """Run the naming rules over an inventory.

    Returns the findings, the scoring counters and descriptive details such as
    the pattern distribution.
    """
    candidates = [r for r in resources if not is_system_resource(r)]
    patterns = Counter(detect_pattern(r.name) for r in candidates)
    dominant = patterns.most_common(1)[0][0] if patterns else None

    indicators = tuple(preferences.environment_indicators) if preferences else DEFAULT_ENVIRONMENT_TOKENS

    findings: list[Finding] = []
    compliant = 0
    with_environment = 0
    for resource in candidates:
        resource_findings = check_resource(resource, dominant, preferences)
        findings.extend(resource_findings)
        if not resource_findings:
            compliant += 1
        if has_environment_indicator(resource.name, indicators):
            with_environment += 1

    total = len(candidates)
    consistency = (patterns[dominant] / total * 100) if total and dominant else 100.0
    counters = {
        "naming_total": float(total),
        "naming_compliant": float(compliant),
        "naming_with_environment": float(with_environment),
        "naming_consistency": round(consistency, 2),
    }
    details = {
        "pattern_distribution": dict(patterns),
        "dominant_pattern": dominant,
        "system_resources_skipped": len(resources) - total,
    }
    return findings, counters, details
