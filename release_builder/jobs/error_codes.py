"""Deterministic error codes persisted with failed build runs."""

from __future__ import annotations

from enum import Enum

from release_builder.adapters import (
    CommandFailedError,
    PatternMatchError,
    ProcessLaunchError,
    TagAlreadyExistsError,
    UploadError,
)
from release_builder.domain import BuildPipelineError


class BuildErrorCode(str, Enum):
    """Error codes for terminal build failures."""

    TAG_EXISTS = "BUILD_TAG_EXISTS_ERROR"
    COMMAND_FAILED = "BUILD_COMMAND_FAILED_ERROR"
    PATTERN_MATCH = "BUILD_PATTERN_MATCH_ERROR"
    PROCESS_LAUNCH = "BUILD_PROCESS_LAUNCH_ERROR"
    UPLOAD = "BUILD_UPLOAD_ERROR"
    CONTRACT = "BUILD_CONTRACT_ERROR"
    UNEXPECTED = "BUILD_UNEXPECTED_ERROR"


def job_map_error_code(error: BaseException) -> BuildErrorCode:
    """Return the deterministic error code for one build failure.

    Pattern matches are checked before generic command failures because both
    derive from the process error base.

    Args:
        error: Exception that ended the build.

    Returns:
        BuildErrorCode: Matching error code.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    if isinstance(error, TagAlreadyExistsError):
        return BuildErrorCode.TAG_EXISTS
    if isinstance(error, PatternMatchError):
        return BuildErrorCode.PATTERN_MATCH
    if isinstance(error, CommandFailedError):
        return BuildErrorCode.COMMAND_FAILED
    if isinstance(error, ProcessLaunchError):
        return BuildErrorCode.PROCESS_LAUNCH
    if isinstance(error, UploadError):
        return BuildErrorCode.UPLOAD
    if isinstance(error, BuildPipelineError):
        return BuildErrorCode.CONTRACT
    return BuildErrorCode.UNEXPECTED
