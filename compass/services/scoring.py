"""Scoring engine — weighted sub-scores minus a flat severity penalty.

Every category scores the same way:

1. its profile turns the analyzer counters into sub-scores in [0, 100],
2. the weighted sub-scores are summed,
3. ``critical × 15 + high × 8`` is subtracted for scored findings,
4. the result is clamped to [0, 100] and rounded to two decimals.

A result with no applicable items scores 100. A dimension listed in
``CategoryResult.unavailable`` scores the neutral 50 regardless of its
counters. A sub-score function may return ``None`` for a dimension that was
not part of the run; the remaining weights are then renormalised.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass

from pydantic import BaseModel, Field

from compass.schemas.findings import CategoryResult, Severity

CRITICAL_PENALTY = 15.0
HIGH_PENALTY = 8.0
NEUTRAL_SCORE = 50.0
PERFECT_SCORE = 100.0

# Per-severity point costs for violation sub-scores, capped at 100
VIOLATION_COSTS = {Severity.HIGH: 10.0, Severity.MEDIUM: 5.0, Severity.LOW: 2.0}

SubScoreFunction = Callable[[CategoryResult], Mapping[str, float | None]]


def clamp(value: float, low: float = 0.0, high: float = PERFECT_SCORE) -> float:
    return max(low, min(high, value))


def percentage(part: float, whole: float, empty: float = PERFECT_SCORE) -> float:
    """``part / whole`` as a percentage, ``empty`` when there is nothing to measure."""
    if whole <= 0:
        return empty
    return clamp(part / whole * 100)


def violation_score(result: CategoryResult, multiplier: float = 1.0, category: str | None = None) -> float:
    """100 minus the capped per-severity cost of the result's violations."""
    cost = 0.0
    for finding in result.findings:
        if not finding.scored or (category is not None and finding.category != category):
            continue
        cost += VIOLATION_COSTS.get(finding.severity, 0.0)
    return PERFECT_SCORE - min(PERFECT_SCORE, cost * multiplier)


@dataclass(frozen=True)
class ScoringProfile:
    """Weight table and sub-score definitions for one kind of result."""

    name: str
    weights: dict[str, float]
    sub_scores: SubScoreFunction
    applicable_counter: str = "applicable_items"
    finding_category: str | None = None


class ScoreBreakdown(BaseModel):
    """How a score was reached, kept for diagnostics and tests."""

    profile: str
    sub_scores: dict[str, float] = Field(default_factory=dict)
    weighted: dict[str, float] = Field(default_factory=dict)
    penalty: float = 0.0
    vacuous: bool = False
    score: float


@dataclass
class ScoringEngine:
    """Computes comparable 0-100 scores across categories."""

    critical_penalty: float = CRITICAL_PENALTY
    high_penalty: float = HIGH_PENALTY

    def penalty(self, result: CategoryResult, category: str | None = None) -> float:
        critical = high = 0
        for finding in result.findings:
            if not finding.scored or (category is not None and finding.category != category):
                continue
            if finding.severity == Severity.CRITICAL:
                critical += 1
            elif finding.severity == Severity.HIGH:
                high += 1
        return critical * self.critical_penalty + high * self.high_penalty

    def breakdown(self, result: CategoryResult, profile: ScoringProfile) -> ScoreBreakdown:
        raw = dict(profile.sub_scores(result))
        sub_scores: dict[str, float] = {}
        for dimension in profile.weights:
            if dimension in result.unavailable:
                sub_scores[dimension] = NEUTRAL_SCORE
            elif raw.get(dimension) is not None:
                sub_scores[dimension] = round(clamp(float(raw[dimension])), 2)

        applicable = result.counters.get(profile.applicable_counter, 0)
        if applicable <= 0 and not result.unavailable:
            return ScoreBreakdown(
                profile=profile.name,
                sub_scores=sub_scores,
                vacuous=True,
                score=PERFECT_SCORE,
            )

        total_weight = sum(profile.weights[d] for d in sub_scores)
        weighted: dict[str, float] = {}
        if total_weight > 0:
            for dimension, value in sub_scores.items():
                weighted[dimension] = value * profile.weights[dimension] / total_weight
        penalty = self.penalty(result, profile.finding_category)
        score = round(clamp(sum(weighted.values()) - penalty), 2)
        return ScoreBreakdown(
            profile=profile.name,
            sub_scores=sub_scores,
            weighted={k: round(v, 2) for k, v in weighted.items()},
            penalty=penalty,
            score=score,
        )

    def score(self, result: CategoryResult, profile: ScoringProfile) -> float:
        return self.breakdown(result, profile).score

    def combine(
        self,
        scores: Mapping[str, float],
        weights: Mapping[str, float],
        extra_penalty: float = 0.0,
    ) -> float:
        """Weighted mean of already-scored parts, used for full-type runs."""
        total_weight = sum(weights[k] for k in scores)
        if total_weight <= 0:
            return PERFECT_SCORE
        value = sum(scores[k] * weights[k] for k in scores) / total_weight
        return round(clamp(value - extra_penalty), 2)


# ─── Profiles ────────────────────────────────────────────────────────────────


def _naming_sub_scores(result: CategoryResult) -> dict[str, float | None]:
    c = result.counters
    total = c.get("naming_total", 0)
    return {
        "compliance": percentage(c.get("naming_compliant", 0), total),
        "consistency": c.get("naming_consistency", PERFECT_SCORE),
        "environment_indicators": percentage(c.get("naming_with_environment", 0), total),
    }


def _tagging_sub_scores(result: CategoryResult) -> dict[str, float | None]:
    c = result.counters
    return {
        "coverage": percentage(c.get("tagged_resources", 0), c.get("tagging_total", 0)),
        "required_coverage": c.get("required_tag_coverage", PERFECT_SCORE),
        "violations": violation_score(result, category="Tagging"),
    }


def _tagging_preference_sub_scores(result: CategoryResult) -> dict[str, float | None]:
    c = result.counters
    multiplier = 1.5 if c.get("enforce_tag_compliance", 0) else 1.0
    return {
        "coverage": percentage(c.get("tagged_resources", 0), c.get("tagging_total", 0)),
        "client_required_coverage": c.get("client_required_tag_coverage", PERFECT_SCORE),
        "violations": violation_score(result, multiplier=multiplier, category="Tagging"),
    }


def _identity_sub_scores(result: CategoryResult) -> dict[str, float | None]:
    c = result.counters
    total_apps = c.get("total_applications", 0)
    if total_apps > 0:
        risky_pct = c.get("risky_applications", 0) / total_apps * 100
        app_score = max(0.0, PERFECT_SCORE - risky_pct * 2)
    else:
        app_score = PERFECT_SCORE
    stale = c.get("inactive_users", 0) + c.get("unmanaged_devices", 0)
    return {
        "application_security": app_score,
        "user_device": max(0.0, PERFECT_SCORE - stale * 5),
        "rbac": max(0.0, PERFECT_SCORE - c.get("overprivileged_assignments", 0) * 10),
        "conditional_access": c.get("conditional_access_coverage", 0.0),
    }


def _backup_sub_scores(result: CategoryResult) -> dict[str, float | None]:
    c = result.counters
    protectable = c.get("protectable_resources", 0)
    if protectable > 0 and c.get("backup_vaults", 0) == 0:
        vault = 0.0
    else:
        vault = max(0.0, PERFECT_SCORE - c.get("vault_issues", 0) * 25)
    return {
        "backup_coverage": percentage(c.get("protected_resources", 0), protectable),
        "vault_configuration": vault,
    }


def _recovery_sub_scores(result: CategoryResult) -> dict[str, float | None]:
    c = result.counters
    return {
        "disaster_recovery": PERFECT_SCORE if c.get("has_dr_plan", 0) else 0.0,
        "redundancy": max(
            0.0,
            PERFECT_SCORE - c.get("single_points_of_failure", 0) * 15 - c.get("locally_redundant_storage", 0) * 5,
        ),
    }


def _security_sub_scores(result: CategoryResult) -> dict[str, float | None]:
    c = result.counters
    network: float | None = None
    defender: float | None = None
    if c.get("network_evaluated", 0):
        network = (
            PERFECT_SCORE
            - c.get("open_to_internet_rules", 0) * 20
            - c.get("permissive_rules", 0) * 10
            - (30 if c.get("virtual_networks", 0) > 0 and c.get("network_security_groups", 0) == 0 else 0)
        )
    if c.get("defender_evaluated", 0):
        defender = (
            PERFECT_SCORE
            - (0 if c.get("defender_enabled", 0) else 40)
            - c.get("defender_high_recommendations", 0) * 15
            - c.get("defender_medium_recommendations", 0) * 8
        )
    return {"network": network, "defender": defender}


NAMING_PROFILE = ScoringProfile(
    name="naming",
    weights={"compliance": 0.6, "consistency": 0.2, "environment_indicators": 0.2},
    sub_scores=_naming_sub_scores,
    applicable_counter="naming_total",
    finding_category="NamingConvention",
)

TAGGING_PROFILE = ScoringProfile(
    name="tagging",
    weights={"coverage": 0.4, "required_coverage": 0.3, "violations": 0.3},
    sub_scores=_tagging_sub_scores,
    applicable_counter="tagging_total",
    finding_category="Tagging",
)

TAGGING_PREFERENCE_PROFILE = ScoringProfile(
    name="tagging_preferences",
    weights={"coverage": 0.3, "client_required_coverage": 0.4, "violations": 0.3},
    sub_scores=_tagging_preference_sub_scores,
    applicable_counter="tagging_total",
    finding_category="Tagging",
)

IDENTITY_PROFILE = ScoringProfile(
    name="identity",
    weights={"application_security": 0.25, "user_device": 0.25, "rbac": 0.30, "conditional_access": 0.20},
    sub_scores=_identity_sub_scores,
)

BACKUP_PROFILE = ScoringProfile(
    name="backup",
    weights={"backup_coverage": 0.7, "vault_configuration": 0.3},
    sub_scores=_backup_sub_scores,
    applicable_counter="backup_applicable",
    finding_category="BackupCoverage",
)

RECOVERY_PROFILE = ScoringProfile(
    name="recovery",
    weights={"disaster_recovery": 0.4, "redundancy": 0.6},
    sub_scores=_recovery_sub_scores,
    applicable_counter="recovery_applicable",
    finding_category="RecoveryConfiguration",
)

SECURITY_PROFILE = ScoringProfile(
    name="security",
    weights={"network": 0.5, "defender": 0.5},
    sub_scores=_security_sub_scores,
)

GOVERNANCE_FULL_WEIGHTS = {"naming": 0.5, "tagging": 0.5}
CONTINUITY_FULL_WEIGHTS = {"backup": 0.6, "recovery": 0.4}

