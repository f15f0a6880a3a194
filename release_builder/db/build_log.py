"""Database service for append-only build log persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import Engine, text
from sqlalchemy.exc import SQLAlchemyError

from release_builder.domain import LogCategory, LogEntry, LogLevel

from .interfaces import BuildLogRepositoryPort


class SQLAlchemyBuildLogService(BuildLogRepositoryPort):
    """SQLAlchemy-backed build log service.

    Entries are never updated; read order is insertion order.
    """

    def __init__(self, engine: Engine):
        """Initialize build log persistence service.

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

    def db_build_log_append(self, entry: LogEntry) -> None:
        """Append one log entry.

        Args:
            entry: Log entry to persist.

        Returns:
            None: Row is inserted as side effect.

        Raises:
            RuntimeError: Raised when persistence fails.
        """

        try:
            with self._engine.begin() as connection:
                connection.execute(
                    text(
                        "INSERT INTO build_log ("
                        "entry_id, build_run_id, category, level, content, created_at_utc"
                        ") VALUES ("
                        ":entry_id, :build_run_id, :category, :level, :content, :created_at_utc"
                        ")"
                    ),
                    {
                        "entry_id": str(entry.entry_id),
                        "build_run_id": str(entry.build_id),
                        "category": entry.category.value,
                        "level": entry.level.value,
                        "content": entry.content,
                        "created_at_utc": entry.created_at_utc.isoformat(),
                    },
                )
        except SQLAlchemyError as error:
            raise RuntimeError("failed to append build log entry") from error

    def db_build_log_list_for_build(self, build_id: UUID, limit: int | None = None, offset: int = 0) -> list[LogEntry]:
        """List log entries of one build in append order.

        Args:
            build_id: Owning build identifier.
            limit: Optional maximum number of rows.
            offset: Number of rows to skip.

        Returns:
            list[LogEntry]: Ordered log entries.

        Raises:
            ValueError: Raised when limit or offset are invalid.
            RuntimeError: Raised when database read fails.
        """

        if limit is not None and limit < 1:
            raise ValueError("limit must be >= 1")
        if offset < 0:
            raise ValueError("offset must be >= 0")

        pagination_clause = ""
        parameters: dict[str, Any] = {"build_run_id": str(build_id)}
        if limit is not None:
            pagination_clause = "LIMIT :limit OFFSET :offset"
            parameters.update({"limit": limit, "offset": offset})
        try:
            with self._engine.connect() as connection:
                rows = connection.execute(
                    text(
                        "SELECT entry_id, build_run_id, category, level, content, created_at_utc "
                        "FROM build_log "
                        "WHERE build_run_id = :build_run_id "
                        "ORDER BY build_log_id ASC "
                        f"{pagination_clause}"
                    ),
                    parameters,
                ).mappings().all()
                if limit is None:
                    rows = rows[offset:]
                return [_db_map_log_entry(row) for row in rows]
        except SQLAlchemyError as error:
            raise RuntimeError("failed to list build log entries") from error


def _db_map_log_entry(row: Any) -> LogEntry:
    created_at_value = row["created_at_utc"]
    created_at_utc = (
        created_at_value if isinstance(created_at_value, datetime) else datetime.fromisoformat(str(created_at_value))
    )
    return LogEntry(
        build_id=UUID(str(row["build_run_id"])),
        category=LogCategory(row["category"]),
        level=LogLevel(row["level"]),
        content=row["content"],
        created_at_utc=created_at_utc,
        entry_id=UUID(str(row["entry_id"])),
    )
