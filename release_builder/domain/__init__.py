"""Domain models used across application layer boundaries."""

from .errors import (
	BuildJobAlreadyRunningError,
	BuildJobCancelledError,
	BuildJobNotFoundError,
	BuildPipelineError,
	DuplicateExportKindError,
	EmptyExportKindSetError,
	VersionValidationError,
	VersionValidationReason,
)
from .models import (
	AppMetadata,
	BuildPayload,
	ExportKind,
	GitBranch,
	HealthStatus,
	JobState,
	LogCategory,
	LogEntry,
	LogLevel,
	Platform,
	ProgressEvent,
	ProjectDescriptor,
	SchemeDescriptor,
	SourceSelection,
	Version,
)
from .timeline import domain_build_log_entry

__all__ = [
	"AppMetadata",
	"BuildJobAlreadyRunningError",
	"BuildJobCancelledError",
	"BuildJobNotFoundError",
	"BuildPayload",
	"BuildPipelineError",
	"DuplicateExportKindError",
	"EmptyExportKindSetError",
	"ExportKind",
	"GitBranch",
	"HealthStatus",
	"JobState",
	"LogCategory",
	"LogEntry",
	"LogLevel",
	"Platform",
	"ProgressEvent",
	"ProjectDescriptor",
	"SchemeDescriptor",
	"SourceSelection",
	"Version",
	"VersionValidationError",
	"VersionValidationReason",
	"domain_build_log_entry",
]
