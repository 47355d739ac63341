"""Schemas for assessments — lifecycle records and API payloads."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from compass.schemas.findings import Finding, Recommendation


class AssessmentType(str, Enum):
    """Fine-grained assessment kinds a client can request."""

    NAMING_CONVENTION = "NamingConvention"
    TAGGING = "Tagging"
    GOVERNANCE_FULL = "GovernanceFull"
    ENTERPRISE_APPLICATIONS = "EnterpriseApplications"
    STALE_USERS_DEVICES = "StaleUsersDevices"
    RESOURCE_IAM_RBAC = "ResourceIamRbac"
    CONDITIONAL_ACCESS = "ConditionalAccess"
    IDENTITY_FULL = "IdentityFull"
    BACKUP_COVERAGE = "BackupCoverage"
    RECOVERY_CONFIGURATION = "RecoveryConfiguration"
    BUSINESS_CONTINUITY_FULL = "BusinessContinuityFull"
    NETWORK_SECURITY = "NetworkSecurity"
    DEFENDER_FOR_CLOUD = "DefenderForCloud"
    SECURITY_FULL = "SecurityFull"
    FULL = "Full"


class AssessmentCategory(str, Enum):
    """The four non-overlapping assessment domains."""

    RESOURCE_GOVERNANCE = "ResourceGovernance"
    IDENTITY_ACCESS_MANAGEMENT = "IdentityAccessManagement"
    BUSINESS_CONTINUITY = "BusinessContinuity"
    SECURITY_POSTURE = "SecurityPosture"


class AssessmentStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (AssessmentStatus.COMPLETED, AssessmentStatus.FAILED)


class AssessmentRequest(BaseModel):
    """Request to start an assessment against an environment."""

    type: str = Field(min_length=1)
    environment_id: str
    organization_id: str | None = None
    subscription_ids: list[str] = Field(default_factory=list)
    use_client_preferences: bool = False
    name: str | None = Field(default=None, max_length=255)


class AssessmentRecord(BaseModel):
    """Persisted state of one assessment."""

    id: str
    organization_id: str | None
    environment_id: str
    name: str
    assessment_type: AssessmentType
    category: AssessmentCategory
    status: AssessmentStatus = AssessmentStatus.PENDING
    overall_score: float | None = None
    subscription_ids: list[str] = Field(default_factory=list)
    use_client_preferences: bool = False
    error_message: str | None = None
    started_at: datetime
    completed_at: datetime | None = None


class AssessmentStartResponse(BaseModel):
    """Response after an assessment has been accepted."""

    assessment_id: str
    status: AssessmentStatus
    category: AssessmentCategory


class SeverityBreakdown(BaseModel):
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0


class AssessmentMetrics(BaseModel):
    """Distributions derived from an assessment's findings."""

    total_findings: int = 0
    severity: SeverityBreakdown = Field(default_factory=SeverityBreakdown)
    by_category: dict[str, int] = Field(default_factory=dict)
    by_resource_type: dict[str, int] = Field(default_factory=dict)


class AssessmentResult(BaseModel):
    """Externally visible outcome of an assessment."""

    assessment_id: str
    name: str
    assessment_type: AssessmentType
    category: AssessmentCategory
    status: AssessmentStatus
    score: float | None = None
    error_message: str | None = None
    started_at: datetime
    completed_at: datetime | None = None
    findings: list[Finding] = Field(default_factory=list)
    recommendations: list[Recommendation] = Field(default_factory=list)
    metrics: AssessmentMetrics = Field(default_factory=AssessmentMetrics)


class SweepResponse(BaseModel):
    resubmitted: int


class AssessmentTypeInfo(BaseModel):
    """Catalog entry describing one assessment type."""

    type: AssessmentType
    category: AssessmentCategory
    description: str
    sub_analyses: list[AssessmentType]
