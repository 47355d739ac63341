"""Exception hierarchy for the assessment pipeline."""

from __future__ import annotations


class CompassError(Exception):
    """Base class for all pipeline errors."""


class InvalidAssessmentRequest(CompassError):
    """Raised when a request is structurally invalid, e.g. an unknown type."""


class UnsupportedCategoryError(CompassError):
    """Raised when no analyzer is registered for a category."""


class CategoryMismatchError(CompassError):
    """Raised when a type is dispatched to a category it does not belong to."""


class EnvironmentNotFoundError(CompassError):
    """Raised when the target environment of an assessment cannot be found."""


class MissingTenantContextError(CompassError):
    """Raised when an assessment has no owning organization."""


class SourceClientError(CompassError):
    """Raised when an external data source returns a non-success response."""


class AnalysisCancelled(CompassError):
    """Raised by an analyzer when its cancellation signal is set."""
