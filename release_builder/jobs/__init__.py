"""Job layer package for build workflow orchestration boundaries."""

from .build_orchestrator import (
	DEFAULT_ARCHIVE_STAGGER_SECONDS,
	BuildJobOrchestrator,
	BuildOrchestratorConfig,
)
from .error_codes import BuildErrorCode, job_map_error_code
from .interfaces import BuildJobPort, JobExecutionResult, LogSink, ProgressSink
from .job_manager import BuildJobFactory, BuildJobManager, BuildJobStatus
from .log_buffer import BuildLogBuffer

__all__ = [
	"BuildErrorCode",
	"BuildJobFactory",
	"BuildJobManager",
	"BuildJobOrchestrator",
	"BuildJobPort",
	"BuildJobStatus",
	"BuildLogBuffer",
	"BuildOrchestratorConfig",
	"DEFAULT_ARCHIVE_STAGGER_SECONDS",
	"JobExecutionResult",
	"LogSink",
	"ProgressSink",
	"job_map_error_code",
]
