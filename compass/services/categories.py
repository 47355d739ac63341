"""Assessment type catalog — type to category mapping and descriptions."""

from __future__ import annotations

from compass.errors import InvalidAssessmentRequest
from compass.schemas.assessment import AssessmentCategory, AssessmentType

T = AssessmentType
C = AssessmentCategory

CATEGORY_MAP: dict[AssessmentType, AssessmentCategory] = {
    T.NAMING_CONVENTION: C.RESOURCE_GOVERNANCE,
    T.TAGGING: C.RESOURCE_GOVERNANCE,
    T.GOVERNANCE_FULL: C.RESOURCE_GOVERNANCE,
    # Legacy kind, covers naming and tagging only
    T.FULL: C.RESOURCE_GOVERNANCE,
    T.ENTERPRISE_APPLICATIONS: C.IDENTITY_ACCESS_MANAGEMENT,
    T.STALE_USERS_DEVICES: C.IDENTITY_ACCESS_MANAGEMENT,
    T.RESOURCE_IAM_RBAC: C.IDENTITY_ACCESS_MANAGEMENT,
    T.CONDITIONAL_ACCESS: C.IDENTITY_ACCESS_MANAGEMENT,
    T.IDENTITY_FULL: C.IDENTITY_ACCESS_MANAGEMENT,
    T.BACKUP_COVERAGE: C.BUSINESS_CONTINUITY,
    T.RECOVERY_CONFIGURATION: C.BUSINESS_CONTINUITY,
    T.BUSINESS_CONTINUITY_FULL: C.BUSINESS_CONTINUITY,
    T.NETWORK_SECURITY: C.SECURITY_POSTURE,
    T.DEFENDER_FOR_CLOUD: C.SECURITY_POSTURE,
    T.SECURITY_FULL: C.SECURITY_POSTURE,
}

SUB_ANALYSES: dict[AssessmentType, tuple[AssessmentType, ...]] = {
    T.GOVERNANCE_FULL: (T.NAMING_CONVENTION, T.TAGGING),
    T.FULL: (T.NAMING_CONVENTION, T.TAGGING),
    T.IDENTITY_FULL: (
        T.ENTERPRISE_APPLICATIONS,
        T.STALE_USERS_DEVICES,
        T.RESOURCE_IAM_RBAC,
        T.CONDITIONAL_ACCESS,
    ),
    T.BUSINESS_CONTINUITY_FULL: (T.BACKUP_COVERAGE, T.RECOVERY_CONFIGURATION),
    T.SECURITY_FULL: (T.NETWORK_SECURITY, T.DEFENDER_FOR_CLOUD),
}

DESCRIPTIONS: dict[AssessmentType, str] = {
    T.NAMING_CONVENTION: "Analyze resource naming patterns and consistency",
    T.TAGGING: "Evaluate tag coverage and required tag compliance",
    T.GOVERNANCE_FULL: "Complete governance review covering naming and tagging",
    T.FULL: "Legacy full assessment covering naming and tagging",
    T.ENTERPRISE_APPLICATIONS: "Review enterprise applications, credentials and managed identities",
    T.STALE_USERS_DEVICES: "Find inactive users and unmanaged or non-compliant devices",
    T.RESOURCE_IAM_RBAC: "Review role assignments for overprivileged principals",
    T.CONDITIONAL_ACCESS: "Evaluate conditional access policy coverage and MFA enforcement",
    T.IDENTITY_FULL: "Complete identity and access management review",
    T.BACKUP_COVERAGE: "Check backup protection of critical resources",
    T.RECOVERY_CONFIGURATION: "Evaluate redundancy, replication and disaster recovery readiness",
    T.BUSINESS_CONTINUITY_FULL: "Complete business continuity and disaster recovery review",
    T.NETWORK_SECURITY: "Review network security groups, exposure and perimeter protection",
    T.DEFENDER_FOR_CLOUD: "Review Defender for Cloud plans and security recommendations",
    T.SECURITY_FULL: "Complete security posture review",
}


def get_category(assessment_type: AssessmentType) -> AssessmentCategory:
    """Return the single category an assessment type belongs to."""
    return CATEGORY_MAP[assessment_type]


def get_sub_analyses(assessment_type: AssessmentType) -> tuple[AssessmentType, ...]:
    """Return the fine-grained analyses a type expands into."""
    return SUB_ANALYSES.get(assessment_type, (assessment_type,))


def get_description(assessment_type: AssessmentType) -> str:
    return DESCRIPTIONS[assessment_type]


def runs(assessment_type: AssessmentType, analysis: AssessmentType) -> bool:
    """Whether ``analysis`` is part of what ``assessment_type`` covers."""
    return analysis in get_sub_analyses(assessment_type)


def parse_assessment_type(value: AssessmentType | str) -> AssessmentType:
    """Coerce a raw value into an assessment type.

    Raises:
        InvalidAssessmentRequest: If the value names no known type.
    """
    if isinstance(value, AssessmentType):
        return value
    try:
        return AssessmentType(value)
    except ValueError:
        raise InvalidAssessmentRequest(f"Unknown assessment type: {value!r}") from None


def types_in_category(category: AssessmentCategory) -> list[AssessmentType]:
    return [t for t, c in CATEGORY_MAP.items() if c == category]
