"""Recommendation and metrics generation from persisted findings."""

from __future__ import annotations

from collections import Counter

from compass.schemas.assessment import AssessmentMetrics, SeverityBreakdown
from compass.schemas.findings import Effort, Finding, Recommendation, Severity

MAX_AFFECTED_RESOURCES = 10

_EFFORT_RANK = {Effort.LOW: 1, Effort.MEDIUM: 2, Effort.HIGH: 3}


def _title(finding_type: str) -> str:
    """Turn ``MissingRequiredTags`` into ``Missing required tags``."""
    words: list[str] = []
    current = ""
    for char in finding_type:
        if char.isupper() and current and not current[-1].isupper():
            words.append(current)
            current = char
        else:
            current += char
    if current:
        words.append(current)
    text = " ".join(w if w.isupper() else w.lower() for w in words)
    return text[:1].upper() + text[1:]


def generate_recommendations(findings: list[Finding]) -> list[Recommendation]:
    """Group findings by type into prioritised recommendations.

    Ordering is deterministic: highest priority first, then by number of
    findings, then by the order in which the type first appeared.
    """
    groups: dict[str, list[Finding]] = {}
    for finding in findings:
        groups.setdefault(finding.finding_type, []).append(finding)

    recommendations = []
    for finding_type, group in groups.items():
        priority = max((f.severity for f in group), key=lambda s: s.rank)
        effort = max((f.effort for f in group), key=lambda e: _EFFORT_RANK[e])
        affected: list[str] = []
        for finding in group:
            if finding.resource_name not in affected:
                affected.append(finding.resource_name)
        recommendations.append(Recommendation(
            finding_type=finding_type,
            category=group[0].category,
            title=_title(finding_type),
            description=group[0].recommendation,
            priority=priority,
            effort=effort,
            finding_count=len(group),
            affected_resources=affected[:MAX_AFFECTED_RESOURCES],
        ))

    order = {t: i for i, t in enumerate(groups)}
    recommendations.sort(key=lambda r: (-r.priority.rank, -r.finding_count, order[r.finding_type]))
    return recommendations


def build_metrics(findings: list[Finding]) -> AssessmentMetrics:
    severity = Counter(f.severity for f in findings)
    return AssessmentMetrics(
        total_findings=len(findings),
        severity=SeverityBreakdown(
            critical=severity[Severity.CRITICAL],
            high=severity[Severity.HIGH],
            medium=severity[Severity.MEDIUM],
            low=severity[Severity.LOW],
        ),
        by_category=dict(Counter(f.category for f in findings)),
        by_resource_type=dict(Counter(f.resource_type or "Unknown" for f in findings)),
    )
