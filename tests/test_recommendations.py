"""Tests for recommendation and metrics generation."""

from __future__ import annotations

from compass.schemas.findings import Effort, Finding, Severity
from compass.services.recommendations import MAX_AFFECTED_RESOURCES, build_metrics, generate_recommendations


def _finding(finding_type, name, severity=Severity.MEDIUM, effort=Effort.LOW, category="Tagging", rtype="VM"):
    return Finding(
        category=category,
        finding_type=finding_type,
        resource_id=f"/r/{name}",
        resource_name=name,
        resource_type=rtype,
        severity=severity,
        issue="issue",
        recommendation=f"Fix {finding_type}",
        effort=effort,
    )


class TestRecommendations:
    """Findings grouped by type, highest priority first."""

    def test_grouped_by_type(self):
        """Findings of one type collapse into one recommendation at the worst severity."""
        findings = [
            _finding("MissingRequiredTags", "vm-a"),
            _finding("MissingRequiredTags", "vm-b", Severity.HIGH, Effort.MEDIUM),
            _finding("EmptyTagValues", "vm-c"),
        ]
        recommendations = generate_recommendations(findings)
        assert [r.finding_type for r in recommendations] == ["MissingRequiredTags", "EmptyTagValues"]
        top = recommendations[0]
        assert top.title == "Missing required tags"
        assert top.priority == Severity.HIGH
        assert top.effort == Effort.MEDIUM
        assert top.finding_count == 2
        assert top.affected_resources == ["vm-a", "vm-b"]
        assert top.description == "Fix MissingRequiredTags"

    def test_order_is_deterministic(self):
        """Ties break by count then first appearance, stable across calls."""
        findings = [
            _finding("B", "r1"),
            _finding("A", "r2"),
            _finding("A", "r3"),
            _finding("C", "r4", Severity.CRITICAL),
            _finding("D", "r5"),
        ]
        order = [r.finding_type for r in generate_recommendations(findings)]
        assert order == ["C", "A", "B", "D"]
        assert order == [r.finding_type for r in generate_recommendations(list(findings))]

    def test_affected_resources_capped(self):
        """The affected resource list is capped but the count is not."""
        findings = [_finding("NoTags", f"vm-{i}") for i in range(15)]
        recommendation = generate_recommendations(findings)[0]
        assert recommendation.finding_count == 15
        assert len(recommendation.affected_resources) == MAX_AFFECTED_RESOURCES

    def test_no_findings(self):
        assert generate_recommendations([]) == []


class TestMetrics:
    """Severity, category and resource type distributions."""

    def test_distributions(self):
        """Metrics count by severity, category and resource type."""
        findings = [
            _finding("A", "r1", Severity.CRITICAL, rtype="VM"),
            _finding("A", "r2", Severity.HIGH, category="NamingConvention", rtype="VM"),
            _finding("B", "r3", Severity.LOW, rtype=""),
        ]
        metrics = build_metrics(findings)
        assert metrics.total_findings == 3
        assert metrics.severity.critical == 1
        assert metrics.severity.high == 1
        assert metrics.severity.medium == 0
        assert metrics.severity.low == 1
        assert metrics.by_category == {"Tagging": 2, "NamingConvention": 1}
        assert metrics.by_resource_type == {"VM": 2, "Unknown": 1}
