"""Typed interfaces for database-layer services.

All SQL access must remain in the db package and its submodules.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol
from uuid import UUID

from release_builder.domain import BuildPayload, ExportKind, HealthStatus, JobState, LogEntry, Version


class DatabaseHealthPort(Protocol):
    """Port definition for database connectivity verification."""

    def db_connection_label(self) -> str:
        """Return a stable label for the active database connection target.

        Returns:
            str: Database target label for diagnostics.

        Raises:
            RuntimeError: Raised when connection metadata is unavailable.
        """

    def db_check_health(self) -> HealthStatus:
        """Check database connectivity and return deterministic health payload.

        Returns:
            HealthStatus: Database health status payload.

        Raises:
            ConnectionError: Raised when database cannot be reached.
        """


@dataclass(frozen=True)
class BuildRunReference:
    """Immutable request fields for one build run.

    Attributes:
        project_name: Project name.
        scheme_name: Scheme name.
        version: Version being built.
        source_branch: Optional branch the tag is created from.
        export_kinds: Requested export kinds in request order.
    """

    project_name: str
    scheme_name: str
    version: Version
    source_branch: str | None
    export_kinds: tuple[ExportKind, ...]


@dataclass(frozen=True)
class BuildRunState:
    """Runtime lifecycle and outcome state for one build run.

    Attributes:
        state: Current job state.
        progress: Last reported completion fraction.
        message: Last reported progress message.
        started_at_utc: Run start timestamp in UTC.
        ended_at_utc: Optional run end timestamp in UTC.
        error_code: Optional deterministic error code.
        error_message: Optional human-readable error message.
    """

    state: JobState
    progress: float
    message: str
    started_at_utc: datetime
    ended_at_utc: datetime | None
    error_code: str | None
    error_message: str | None


@dataclass(frozen=True)
class BuildRunRecord:
    """Persistence model for one build run row.

    Attributes:
        build_id: Build identity.
        reference: Immutable request values.
        state: Runtime lifecycle and outcome values.
    """

    build_id: UUID
    reference: BuildRunReference
    state: BuildRunState


class BuildRunRepositoryPort(Protocol):
    """Port definition for build run lifecycle persistence."""

    def db_build_run_create_started(self, payload: BuildPayload) -> BuildRunRecord:
        """Create a run row in `idle` state for one payload.

        Raises:
            ValueError: Raised when the build id already has a row.
            RuntimeError: Raised when persistence fails.
        """

    def db_build_run_update_progress(self, build_id: UUID, state: JobState, progress: float, message: str) -> None:
        """Store latest state and progress for one run.

        Raises:
            LookupError: Raised when run is not found.
            RuntimeError: Raised when persistence fails.
        """

    def db_build_run_finalize(
        self,
        build_id: UUID,
        state: JobState,
        error_code: str | None,
        error_message: str | None,
    ) -> BuildRunRecord:
        """Store terminal state for one run.

        Raises:
            LookupError: Raised when run is not found.
            ValueError: Raised when state is not terminal.
            RuntimeError: Raised when persistence fails.
        """

    def db_build_run_get_by_id(self, build_id: UUID) -> BuildRunRecord | None:
        """Fetch one run by id."""

    def db_build_run_list(self, limit: int, offset: int) -> list[BuildRunRecord]:
        """List runs ordered by latest start first."""


class BuildLogRepositoryPort(Protocol):
    """Port definition for append-only build log persistence."""

    def db_build_log_append(self, entry: LogEntry) -> None:
        """Append one log entry.

        Raises:
            RuntimeError: Raised when persistence fails.
        """

    def db_build_log_list_for_build(self, build_id: UUID, limit: int | None = None, offset: int = 0) -> list[LogEntry]:
        """List log entries of one build in append order."""
