"""Typed domain models shared across build pipeline layers.

This module provides immutable data contracts for build requests, version
identity, progress reporting and structured build logs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import re
from typing import Final
from uuid import UUID, uuid4

from .errors import VersionValidationError, VersionValidationReason

_VERSION_PATTERN: Final[re.Pattern[str]] = re.compile(r"^\d+\.\d+\.\d+$")


@dataclass(frozen=True)
class AppMetadata:
    """Static application metadata for runtime identification.

    Attributes:
        application_name: Human-readable app name.
        environment_name: Runtime environment label.
    """

    application_name: str
    environment_name: str


@dataclass(frozen=True)
class HealthStatus:
    """Health response contract used by health-check surfaces.

    Attributes:
        status: Overall status text for service health.
        detail: Additional message suitable for operational diagnostics.
    """

    status: str
    detail: str


@dataclass(frozen=True, order=True)
class Version:
    """Release version identity mapped onto remote tags.

    Construction never validates. Call `version_validate` before using a
    version from untrusted input. Ordering compares `version` text first and
    `build_number` second; `commit_hash` does not participate.

    Attributes:
        version: Marketing version in `X.Y.Z` form.
        build_number: Non-negative build number.
        commit_hash: Source commit hash the version points to.
    """

    version: str = "0.0.0"
    build_number: int = 0
    commit_hash: str = field(default="", compare=False)

    @property
    def tag_name(self) -> str:
        """Return remote tag name `v{version}_{build_number}`."""

        return f"v{self.version}_{self.build_number}"

    @property
    def display_string(self) -> str:
        """Return tag name suffixed with the abbreviated commit hash."""

        return f"{self.tag_name}_{self.commit_hash[:6]}"

    def version_validate(self) -> None:
        """Validate version text and build number.

        Returns:
            None: Validation succeeds silently.

        Raises:
            VersionValidationError: Raised when version text or build number is malformed.
        """

        if _VERSION_PATTERN.match(self.version) is None:
            raise VersionValidationError(VersionValidationReason.INVALID_VERSION_FORMAT)
        if isinstance(self.build_number, bool) or not isinstance(self.build_number, int) or self.build_number < 0:
            raise VersionValidationError(VersionValidationReason.INVALID_BUILD_NUMBER_FORMAT)


@dataclass(frozen=True)
class GitBranch:
    """Remote branch head.

    Attributes:
        name: Branch name without `refs/heads/` prefix.
        commit_hash: Head commit hash.
    """

    name: str
    commit_hash: str


class Platform(str, Enum):
    """Target platform a scheme can be archived for."""

    IOS = "iOS"
    MACOS = "macOS"
    MAC_CATALYST = "macCatalyst"

    @property
    def destination_flags(self) -> str:
        """Return build tool destination/SDK flags for this platform."""

        return _PLATFORM_DESTINATION_FLAGS[self]


_PLATFORM_DESTINATION_FLAGS: Final[dict[Platform, str]] = {
    Platform.IOS: "-destination 'generic/platform=iOS'",
    Platform.MACOS: "-sdk macosx",
    Platform.MAC_CATALYST: "-sdk macosx SUPPORTS_MACCATALYST=YES",
}


class ExportKind(str, Enum):
    """Distribution method applied when exporting an archive."""

    RELEASE_TESTING = "release-testing"
    APP_STORE = "app-store"

    @property
    def is_testing_distribution(self) -> bool:
        """Return whether exports of this kind are uploaded for testers."""

        return self is ExportKind.RELEASE_TESTING

    def export_options(self) -> dict[str, str]:
        """Return export options property list values for this kind.

        Returns:
            dict[str, str]: Property list dictionary consumed by the build tool.

        Raises:
            RuntimeError: This helper does not raise runtime errors.
        """

        if self is ExportKind.RELEASE_TESTING:
            return {"method": "release-testing"}
        return {
            "iCloudContainerEnvironment": "Production",
            "method": "app-store-connect",
            "destination": "upload",
        }


class LogCategory(str, Enum):
    """Pipeline stage a log entry belongs to."""

    CLONE = "clone"
    RESOLVE_DEPENDENCIES = "resolve_dependencies"
    ARCHIVE = "archive"
    EXPORT = "export"
    CLEANUP = "cleanup"


class LogLevel(str, Enum):
    """Severity of one build log entry."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class JobState(str, Enum):
    """Lifecycle state of one build job."""

    IDLE = "idle"
    CLONING = "cloning"
    RESOLVING_DEPENDENCIES = "resolving_dependencies"
    ARCHIVING = "archiving"
    EXPORTING = "exporting"
    CLEANING_UP = "cleaning_up"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Return whether this state ends the job."""

        return self in (JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED)


@dataclass(frozen=True)
class ProjectDescriptor:
    """Source project identity and location.

    Attributes:
        name: Project name, also used as build root directory name.
        git_remote_url: Remote repository URL.
        xcodeproj_name: Project bundle name without `.xcodeproj` suffix.
        bundle_identifier: Application bundle identifier.
    """

    name: str
    git_remote_url: str
    xcodeproj_name: str
    bundle_identifier: str = ""


@dataclass(frozen=True)
class SchemeDescriptor:
    """Named build configuration with ordered target platforms.

    Attributes:
        name: Scheme name passed to the build tool.
        platforms: Ordered target platforms.
    """

    name: str
    platforms: tuple[Platform, ...]


@dataclass(frozen=True)
class SourceSelection:
    """Source checkout mode for one build.

    `branch_name=None` selects the existing release tag. A branch name selects
    the branch head, which is tagged and pushed before building.

    Attributes:
        branch_name: Optional branch to tag and build from.
    """

    branch_name: str | None = None

    @classmethod
    def from_tag(cls) -> SourceSelection:
        """Return selection that clones the version tag."""

        return cls(branch_name=None)

    @classmethod
    def from_branch(cls, branch_name: str) -> SourceSelection:
        """Return selection that tags and builds a branch head."""

        if not branch_name.strip():
            raise ValueError("branch_name must not be blank")
        return cls(branch_name=branch_name.strip())

    @property
    def is_branch(self) -> bool:
        """Return whether the build starts from a branch head."""

        return self.branch_name is not None


@dataclass(frozen=True)
class BuildPayload:
    """Immutable request for exactly one build attempt.

    Attributes:
        project: Project descriptor.
        scheme: Scheme descriptor.
        version: Target release version.
        source: Source selection mode.
        export_kinds: Requested export kinds in request order.
        build_id: Build identity.
    """

    project: ProjectDescriptor
    scheme: SchemeDescriptor
    version: Version
    source: SourceSelection
    export_kinds: tuple[ExportKind, ...]
    build_id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class ProgressEvent:
    """Progress notification emitted by one build job.

    Attributes:
        progress: Completion fraction in [0, 1].
        message: Human-readable stage message.
        is_finished: Whether this is the terminal success event.
    """

    progress: float
    message: str
    is_finished: bool = False


@dataclass(frozen=True)
class LogEntry:
    """Append-only structured build log entry.

    Attributes:
        build_id: Owning build identity.
        category: Pipeline stage category.
        level: Severity.
        content: Log text.
        created_at_utc: Emission timestamp.
        entry_id: Unique entry identity.
    """

    build_id: UUID
    category: LogCategory
    level: LogLevel
    content: str
    created_at_utc: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    entry_id: UUID = field(default_factory=uuid4)
