"""Adapter layer package for external tool and upload integration boundaries."""

from .artifact_uploader import HttpArtifactUploader
from .interfaces import ArtifactUploaderPort, CommandExecutorPort, ShellResult, SourceControlPort
from .process_executor import (
	PROCESS_CONFIG_GIT,
	PROCESS_CONFIG_PLAIN,
	PROCESS_CONFIG_XCODEBUILD,
	ProcessExecutor,
	ProcessExecutorConfig,
)
from .shell_errors import (
	CommandFailedError,
	PatternMatchError,
	ProcessError,
	ProcessLaunchError,
	TagAlreadyExistsError,
	UploadError,
)
from .source_control import SourceControlClient, scm_parse_branch_heads, scm_parse_version_tags

__all__ = [
	"ArtifactUploaderPort",
	"CommandExecutorPort",
	"CommandFailedError",
	"HttpArtifactUploader",
	"PROCESS_CONFIG_GIT",
	"PROCESS_CONFIG_PLAIN",
	"PROCESS_CONFIG_XCODEBUILD",
	"PatternMatchError",
	"ProcessError",
	"ProcessExecutor",
	"ProcessExecutorConfig",
	"ProcessLaunchError",
	"ShellResult",
	"SourceControlClient",
	"SourceControlPort",
	"TagAlreadyExistsError",
	"UploadError",
	"scm_parse_branch_heads",
	"scm_parse_version_tags",
]
