"""Database layer package for all SQL and persistence boundaries."""

from .build_log import SQLAlchemyBuildLogService
from .build_run import SQLAlchemyBuildRunService
from .health import SQLAlchemyDatabaseHealthService
from .interfaces import (
	BuildLogRepositoryPort,
	BuildRunRecord,
	BuildRunReference,
	BuildRunRepositoryPort,
	BuildRunState,
	DatabaseHealthPort,
)
from .session import db_create_engine

__all__ = [
	"BuildLogRepositoryPort",
	"BuildRunRecord",
	"BuildRunReference",
	"BuildRunRepositoryPort",
	"BuildRunState",
	"DatabaseHealthPort",
	"SQLAlchemyBuildLogService",
	"SQLAlchemyBuildRunService",
	"SQLAlchemyDatabaseHealthService",
	"db_create_engine",
]
