"""Project-native typed exceptions for build request and job contract failures."""

from __future__ import annotations

from enum import Enum


class BuildPipelineError(Exception):
    """Base exception for build pipeline contract failures."""


class VersionValidationReason(str, Enum):
    """Reason a version failed validation."""

    INVALID_VERSION_FORMAT = "invalid_version_format"
    INVALID_BUILD_NUMBER_FORMAT = "invalid_build_number_format"


class VersionValidationError(BuildPipelineError, ValueError):
    """Version text or build number does not match the release tag contract.

    Attributes:
        reason: Validation failure reason.
    """

    _MESSAGES = {
        VersionValidationReason.INVALID_VERSION_FORMAT: "Version must be in format x.y.z",
        VersionValidationReason.INVALID_BUILD_NUMBER_FORMAT: "Build number must be a non-negative integer",
    }

    def __init__(self, reason: VersionValidationReason):
        super().__init__(self._MESSAGES[reason])
        self.reason = reason


class DuplicateExportKindError(BuildPipelineError, ValueError):
    """Export kind list contains the same kind more than once."""


class EmptyExportKindSetError(BuildPipelineError, ValueError):
    """No export kind remains for a platform after filtering."""


class BuildJobCancelledError(BuildPipelineError):
    """Build job ended because cancellation was requested.

    This is a terminal classification, not a failure.
    """


class BuildJobAlreadyRunningError(BuildPipelineError, RuntimeError):
    """Raised when a build id is submitted while its job is still running."""


class BuildJobNotFoundError(BuildPipelineError, LookupError):
    """Raised when a build id has no known job."""
