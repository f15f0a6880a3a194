"""Database service for build run lifecycle persistence."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Final
from uuid import UUID

from sqlalchemy import Engine, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from release_builder.domain import BuildPayload, ExportKind, JobState, Version

from .interfaces import BuildRunRecord, BuildRunReference, BuildRunRepositoryPort, BuildRunState

_BUILD_RUN_COLUMNS: Final[str] = (
    "build_run_id, project_name, scheme_name, version, build_number, commit_hash, source_branch, "
    "export_kinds, state, progress, message, started_at_utc, ended_at_utc, error_code, error_message"
)


class SQLAlchemyBuildRunService(BuildRunRepositoryPort):
    """SQLAlchemy-backed build run service.

    Identifiers and timestamps are bound as text so the same statements run
    on SQLite and PostgreSQL.
    """

    def __init__(self, engine: Engine):
        """Initialize build run persistence service.

        Args:
            engine: SQLAlchemy engine used for all persistence operations.

        Returns:
            None: This initializer does not return a value.

        Raises:
            ValueError: Raised when engine is None.
        """

        if engine is None:
            raise ValueError("engine must not be None")
        self._engine = engine

    def db_build_run_create_started(self, payload: BuildPayload) -> BuildRunRecord:
        """Create an `idle` run row for one build payload.

        Args:
            payload: Build request being started.

        Returns:
            BuildRunRecord: Newly created run.

        Raises:
            ValueError: Raised when the build id already has a row.
            RuntimeError: Raised when persistence fails.
        """

        now_text = _db_utc_now_text()
        try:
            with self._engine.begin() as connection:
                connection.execute(
                    text(
                        "INSERT INTO build_run ("
                        "build_run_id, project_name, scheme_name, version, build_number, commit_hash, "
                        "source_branch, export_kinds, state, progress, message, started_at_utc, updated_at_utc"
                        ") VALUES ("
                        ":build_run_id, :project_name, :scheme_name, :version, :build_number, :commit_hash, "
                        ":source_branch, :export_kinds, :state, 0, '', :started_at_utc, :started_at_utc"
                        ")"
                    ),
                    {
                        "build_run_id": str(payload.build_id),
                        "project_name": payload.project.name,
                        "scheme_name": payload.scheme.name,
                        "version": payload.version.version,
                        "build_number": payload.version.build_number,
                        "commit_hash": payload.version.commit_hash,
                        "source_branch": payload.source.branch_name,
                        "export_kinds": ",".join(kind.value for kind in payload.export_kinds),
                        "state": JobState.IDLE.value,
                        "started_at_utc": now_text,
                    },
                )
                return self._db_fetch_run_by_id_or_raise(connection=connection, build_id=payload.build_id)
        except IntegrityError as error:
            raise ValueError(f"build run {payload.build_id} already exists") from error
        except SQLAlchemyError as error:
            raise RuntimeError("failed to create build run") from error

    def db_build_run_update_progress(self, build_id: UUID, state: JobState, progress: float, message: str) -> None:
        """Store latest state and progress for one run.

        Args:
            build_id: Run identifier.
            state: Current job state.
            progress: Completion fraction in [0, 1].
            message: Progress message.

        Returns:
            None: Row is updated as side effect.

        Raises:
            LookupError: Raised when run is not found.
            ValueError: Raised when progress is out of range.
            RuntimeError: Raised when persistence fails.
        """

        if not 0.0 <= progress <= 1.0:
            raise ValueError("progress must be within [0, 1]")

        try:
            with self._engine.begin() as connection:
                updated = connection.execute(
                    text(
                        "UPDATE build_run SET "
                        "state = :state, progress = :progress, message = :message, updated_at_utc = :updated_at_utc "
                        "WHERE build_run_id = :build_run_id"
                    ),
                    {
                        "state": state.value,
                        "progress": progress,
                        "message": message,
                        "updated_at_utc": _db_utc_now_text(),
                        "build_run_id": str(build_id),
                    },
                )
                if updated.rowcount == 0:
                    raise LookupError("build run not found")
        except SQLAlchemyError as error:
            raise RuntimeError("failed to update build run progress") from error

    def db_build_run_finalize(
        self,
        build_id: UUID,
        state: JobState,
        error_code: str | None,
        error_message: str | None,
    ) -> BuildRunRecord:
        """Store terminal state and end timestamp for one run.

        Args:
            build_id: Run identifier.
            state: Terminal job state.
            error_code: Optional deterministic error code.
            error_message: Optional human-readable message.

        Returns:
            BuildRunRecord: Finalized run.

        Raises:
            LookupError: Raised when run is not found.
            ValueError: Raised when state is not terminal.
            RuntimeError: Raised when persistence fails.
        """

        if not state.is_terminal:
            raise ValueError("state must be one of: completed, failed, cancelled")

        now_text = _db_utc_now_text()
        progress_assignment = "progress = 1.0, " if state is JobState.COMPLETED else ""
        try:
            with self._engine.begin() as connection:
                updated = connection.execute(
                    text(
                        "UPDATE build_run SET "
                        "state = :state, "
                        f"{progress_assignment}"
                        "ended_at_utc = :ended_at_utc, "
                        "updated_at_utc = :ended_at_utc, "
                        "error_code = :error_code, "
                        "error_message = :error_message "
                        "WHERE build_run_id = :build_run_id"
                    ),
                    {
                        "state": state.value,
                        "ended_at_utc": now_text,
                        "error_code": error_code,
                        "error_message": error_message,
                        "build_run_id": str(build_id),
                    },
                )
                if updated.rowcount == 0:
                    raise LookupError("build run not found")
                return self._db_fetch_run_by_id_or_raise(connection=connection, build_id=build_id)
        except SQLAlchemyError as error:
            raise RuntimeError("failed to finalize build run") from error

    def db_build_run_get_by_id(self, build_id: UUID) -> BuildRunRecord | None:
        """Fetch one build run by id.

        Args:
            build_id: Run identifier.

        Returns:
            BuildRunRecord | None: Matching run or None.

        Raises:
            RuntimeError: Raised when database read fails.
        """

        try:
            with self._engine.connect() as connection:
                row = connection.execute(
                    text(f"SELECT {_BUILD_RUN_COLUMNS} FROM build_run WHERE build_run_id = :build_run_id"),
                    {"build_run_id": str(build_id)},
                ).mappings().first()
                if row is None:
                    return None
                return _db_map_build_run_record(row)
        except SQLAlchemyError as error:
            raise RuntimeError("failed to fetch build run by id") from error

    def db_build_run_list(self, limit: int, offset: int) -> list[BuildRunRecord]:
        """List runs with latest start first.

        Args:
            limit: Maximum number of rows.
            offset: Number of rows to skip.

        Returns:
            list[BuildRunRecord]: Ordered run rows.

        Raises:
            ValueError: Raised when limit or offset are invalid.
            RuntimeError: Raised when database read fails.
        """

        if limit < 1:
            raise ValueError("limit must be >= 1")
        if offset < 0:
            raise ValueError("offset must be >= 0")

        try:
            with self._engine.connect() as connection:
                rows = connection.execute(
                    text(
                        f"SELECT {_BUILD_RUN_COLUMNS} FROM build_run "
                        "ORDER BY started_at_utc DESC, build_run_id DESC "
                        "LIMIT :limit OFFSET :offset"
                    ),
                    {"limit": limit, "offset": offset},
                ).mappings().all()
                return [_db_map_build_run_record(row) for row in rows]
        except SQLAlchemyError as error:
            raise RuntimeError("failed to list build runs") from error

    def _db_fetch_run_by_id_or_raise(self, connection, build_id: UUID) -> BuildRunRecord:
        row = connection.execute(
            text(f"SELECT {_BUILD_RUN_COLUMNS} FROM build_run WHERE build_run_id = :build_run_id"),
            {"build_run_id": str(build_id)},
        ).mappings().first()
        if row is None:
            raise LookupError("build run not found")
        return _db_map_build_run_record(row)


def _db_utc_now_text() -> str:
    return datetime.now(timezone.utc).isoformat()


def _db_parse_timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _db_map_build_run_record(row: Any) -> BuildRunRecord:
    """Map SQLAlchemy row mapping to typed build run record.

    Args:
        row: SQLAlchemy mapping row.

    Returns:
        BuildRunRecord: Typed run record.

    Raises:
        ValueError: Raised when stored enum values are unknown.
    """

    export_kinds_text = row["export_kinds"] or ""
    started_at_utc = _db_parse_timestamp(row["started_at_utc"])
    if started_at_utc is None:
        raise ValueError("build_run.started_at_utc must not be null")

    return BuildRunRecord(
        build_id=UUID(str(row["build_run_id"])),
        reference=BuildRunReference(
            project_name=row["project_name"],
            scheme_name=row["scheme_name"],
            version=Version(
                version=row["version"],
                build_number=int(row["build_number"]),
                commit_hash=row["commit_hash"] or "",
            ),
            source_branch=row["source_branch"],
            export_kinds=tuple(ExportKind(value) for value in export_kinds_text.split(",") if value),
        ),
        state=BuildRunState(
            state=JobState(row["state"]),
            progress=float(row["progress"]),
            message=row["message"] or "",
            started_at_utc=started_at_utc,
            ended_at_utc=_db_parse_timestamp(row["ended_at_utc"]),
            error_code=row["error_code"],
            error_message=row["error_message"],
        ),
    )
