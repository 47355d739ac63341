"""Tests for the scoring engine and its category profiles."""

from __future__ import annotations

import pytest

from compass.schemas.findings import CategoryResult, Finding, Severity
from compass.services.scoring import (
    BACKUP_PROFILE,
    IDENTITY_PROFILE,
    NAMING_PROFILE,
    SECURITY_PROFILE,
    TAGGING_PROFILE,
    ScoringEngine,
    clamp,
    percentage,
    violation_score,
)


def _result(counters=None, findings=None, unavailable=None) -> CategoryResult:
    return CategoryResult(
        category="Test",
        assessment_type="Test",
        access_mode="default",
        counters=counters or {},
        findings=findings or [],
        unavailable=unavailable or set(),
    )


def _finding(severity: Severity, category: str = "Tagging", scored: bool = True) -> Finding:
    return Finding(
        category=category,
        finding_type="Example",
        resource_id="/r/1",
        resource_name="r1",
        severity=severity,
        issue="issue",
        recommendation="fix",
        scored=scored,
    )


@pytest.fixture
def engine():
    return ScoringEngine()


# ─── Helpers ─────────────────────────────────────────────────────────────────

class TestHelpers:
    """clamp, percentage and violation_score."""

    @pytest.mark.parametrize("value,expected", [(-5, 0), (0, 0), (42.5, 42.5), (100, 100), (130, 100)])
    def test_clamp(self, value, expected):
        assert clamp(value) == expected

    def test_percentage_of_nothing_is_perfect(self):
        """Zero of zero is 100 percent."""
        assert percentage(0, 0) == 100

    def test_percentage(self):
        assert percentage(1, 4) == 25

    def test_violation_score_caps_at_zero(self):
        """Many findings bottom out at zero."""
        result = _result(findings=[_finding(Severity.HIGH)] * 20)
        assert violation_score(result) == 0

    def test_violation_score_multiplier(self):
        """The multiplier scales the per-finding deduction."""
        result = _result(findings=[_finding(Severity.MEDIUM)] * 2)
        assert violation_score(result) == 90
        assert violation_score(result, multiplier=1.5) == 85

    def test_violation_score_ignores_unscored(self):
        """Descriptive findings do not count as violations."""
        result = _result(findings=[_finding(Severity.HIGH, scored=False)])
        assert violation_score(result) == 100


# ─── Engine ──────────────────────────────────────────────────────────────────

class TestScoringEngine:
    """Weighted sum minus the flat severity penalty."""

    def test_rbac_contribution(self, engine):
        """Three overprivileged assignments give RBAC 70, weighted 21."""
        result = _result(counters={"overprivileged_assignments": 3, "applicable_items": 1})
        breakdown = engine.breakdown(result, IDENTITY_PROFILE)
        assert breakdown.sub_scores["rbac"] == 70
        assert breakdown.weighted["rbac"] == 21
        assert breakdown.penalty == 0

    def test_penalty_counts_critical_and_high(self, engine):
        """Only critical and high findings carry a penalty."""
        result = _result(findings=[
            _finding(Severity.CRITICAL),
            _finding(Severity.HIGH),
            _finding(Severity.HIGH),
            _finding(Severity.MEDIUM),
            _finding(Severity.LOW),
        ])
        assert engine.penalty(result) == 15 + 8 + 8

    def test_penalty_filtered_by_category(self, engine):
        """The penalty can be restricted to one finding category."""
        result = _result(findings=[_finding(Severity.HIGH, "Tagging"), _finding(Severity.HIGH, "NamingConvention")])
        assert engine.penalty(result, "Tagging") == 8

    def test_unscored_findings_do_not_penalise(self, engine):
        """Descriptive findings carry no penalty."""
        result = _result(findings=[_finding(Severity.CRITICAL, scored=False)])
        assert engine.penalty(result) == 0

    def test_score_never_negative(self, engine):
        """A large penalty clamps the score at zero."""
        result = _result(
            counters={"tagging_total": 5, "tagged_resources": 0, "required_tag_coverage": 0},
            findings=[_finding(Severity.CRITICAL)] * 10,
        )
        assert engine.score(result, TAGGING_PROFILE) == 0

    def test_score_rounded_to_two_decimals(self, engine):
        """Scores are rounded to two decimal places."""
        result = _result(counters={
            "naming_total": 3,
            "naming_compliant": 1,
            "naming_with_environment": 2,
            "naming_consistency": 100,
        })
        score = engine.score(result, NAMING_PROFILE)
        assert score == round(score, 2)
        assert score == pytest.approx(0.6 * 100 / 3 + 0.2 * 100 + 0.2 * 200 / 3, abs=0.01)

    def test_no_applicable_items_is_perfect(self, engine):
        """Nothing to assess is a vacuous 100."""
        breakdown = engine.breakdown(_result(), BACKUP_PROFILE)
        assert breakdown.vacuous
        assert breakdown.score == 100

    def test_unavailable_dimension_is_neutral(self, engine):
        """An unavailable dimension scores 50 and blocks the vacuous 100."""
        result = _result(unavailable={"conditional_access"})
        breakdown = engine.breakdown(result, IDENTITY_PROFILE)
        assert not breakdown.vacuous
        assert breakdown.sub_scores["conditional_access"] == 50
        assert breakdown.score == 25 + 25 + 30 + 10

    def test_missing_dimension_renormalised(self, engine):
        """Security with only network evaluated scores on network alone."""
        result = _result(counters={
            "network_evaluated": 1,
            "open_to_internet_rules": 1,
            "applicable_items": 2,
        })
        breakdown = engine.breakdown(result, SECURITY_PROFILE)
        assert "defender" not in breakdown.sub_scores
        assert breakdown.score == 80

    def test_custom_penalties(self):
        """Penalty sizes are configurable."""
        engine = ScoringEngine(critical_penalty=20, high_penalty=10)
        result = _result(findings=[_finding(Severity.CRITICAL), _finding(Severity.HIGH)])
        assert engine.penalty(result) == 30


class TestCombine:
    """Weighted mean across sub-analyses of a full-type run."""

    def test_combine_weighted(self, engine):
        """Sub-analysis scores are averaged by weight."""
        assert engine.combine({"naming": 80, "tagging": 60}, {"naming": 0.5, "tagging": 0.5}) == 70

    def test_combine_single_part(self, engine):
        """Weights are renormalised over the parts that ran."""
        assert engine.combine({"tagging": 64.5}, {"naming": 0.5, "tagging": 0.5}) == 64.5

    def test_combine_nothing_is_perfect(self, engine):
        """No parts combine to 100."""
        assert engine.combine({}, {"naming": 0.5}) == 100

    def test_combine_extra_penalty_clamped(self, engine):
        """An extra penalty never drives the result below zero."""
        assert engine.combine({"backup": 5}, {"backup": 1.0}, extra_penalty=15) == 0
