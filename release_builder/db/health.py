"""Database health service checking connectivity and applied build schema."""

from typing import Final

from sqlalchemy import Engine, inspect, text
from sqlalchemy.exc import SQLAlchemyError

from release_builder.domain import HealthStatus

from .interfaces import DatabaseHealthPort

_REQUIRED_TABLES: Final[tuple[str, ...]] = ("build_run", "build_log")


class SQLAlchemyDatabaseHealthService(DatabaseHealthPort):
    """Database health service backed by SQLAlchemy engine connectivity checks."""

    def __init__(self, engine: Engine):
        """Initialize database health service.

        Args:
            engine: SQLAlchemy engine used for connectivity checks.

        Raises:
            ValueError: Raised when engine is None.
        """

        if engine is None:
            raise ValueError("engine must not be None")
        self._engine = engine

    def db_connection_label(self) -> str:
        """Return the target database URL with credentials hidden."""

        return self._engine.url.render_as_string(hide_password=True)

    def db_check_health(self) -> HealthStatus:
        """Verify connectivity and report whether build tables are migrated.

        Returns:
            HealthStatus: `ok` when reachable and migrated, `schema_missing` when tables are absent.

        Raises:
            ConnectionError: Raised when connectivity check fails.
        """

        try:
            with self._engine.connect() as connection:
                connection.execute(text("SELECT 1"))
                schema_inspector = inspect(connection)
                missing_tables = [name for name in _REQUIRED_TABLES if not schema_inspector.has_table(name)]
        except SQLAlchemyError as error:
            raise ConnectionError("database connectivity check failed") from error

        if missing_tables:
            return HealthStatus(
                status="schema_missing",
                detail=f"missing tables: {', '.join(missing_tables)}; run alembic upgrade head",
            )
        return HealthStatus(
            status="ok",
            detail=f"{self._engine.dialect.name} connectivity verified",
        )
