"""Schemas for findings, recommendations and transient analyzer results."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class Effort(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class Finding(BaseModel):
    """A single detected issue tied to one resource or directory entity.

    Findings are immutable once built; persistence appends them and never
    updates them afterwards.
    """

    model_config = ConfigDict(frozen=True)

    category: str
    finding_type: str
    resource_id: str
    resource_name: str
    resource_type: str = ""
    severity: Severity
    issue: str
    recommendation: str
    effort: Effort = Effort.MEDIUM
    scored: bool = True


class Recommendation(BaseModel):
    """Remediation guidance aggregated over findings of one type."""

    finding_type: str
    category: str
    title: str
    description: str
    priority: Severity
    effort: Effort
    finding_count: int
    affected_resources: list[str] = Field(default_factory=list)


class CategoryResult(BaseModel):
    """Output of one analyzer invocation.

    ``counters`` holds the category-specific raw numbers the scoring profile
    turns into sub-scores. ``unavailable`` names dimensions that could not be
    evaluated because the richer data source was not reachable.
    """

    category: str
    assessment_type: str
    access_mode: str
    findings: list[Finding] = Field(default_factory=list)
    descriptive_findings: list[Finding] = Field(default_factory=list)
    counters: dict[str, float] = Field(default_factory=dict)
    unavailable: set[str] = Field(default_factory=set)
    sub_scores: dict[str, float] = Field(default_factory=dict)
    score: float | None = None
    details: dict[str, Any] = Field(default_factory=dict)

    @property
    def all_findings(self) -> list[Finding]:
        return [*self.findings, *self.descriptive_findings]

    def count_severity(self, severity: Severity) -> int:
        return sum(1 for f in self.findings if f.scored and f.severity == severity)
