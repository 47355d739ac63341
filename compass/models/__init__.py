"""Database models for Compass."""

from compass.models.base import Base
from compass.models.assessment import Assessment, AssessmentFinding
from compass.models.environment import AzureEnvironment, ClientPreferences

__all__ = [
    "Base",
    "Assessment",
    "AssessmentFinding",
    "AzureEnvironment",
    "ClientPreferences",
]
