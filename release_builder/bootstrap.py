"""Application bootstrap wiring for startup validation and dependency assembly."""

from pathlib import Path

from fastapi import FastAPI

from release_builder.adapters import (
    PROCESS_CONFIG_XCODEBUILD,
    HttpArtifactUploader,
    ProcessExecutor,
    SourceControlClient,
)
from release_builder.api import create_api_application
from release_builder.build import PathLayout
from release_builder.config import AppSettings, config_load_settings
from release_builder.db import (
    SQLAlchemyBuildLogService,
    SQLAlchemyBuildRunService,
    SQLAlchemyDatabaseHealthService,
    db_create_engine,
)
from release_builder.domain import BuildPayload
from release_builder.jobs import BuildJobFactory, BuildJobManager, BuildJobOrchestrator, BuildOrchestratorConfig, LogSink


def bootstrap_create_source_control(settings: AppSettings) -> SourceControlClient:
    """Build the source-control client configured by settings."""

    return SourceControlClient(git_executable=settings.git_executable)


def bootstrap_create_job_factory(settings: AppSettings) -> BuildJobFactory:
    """Build a factory creating one fully wired orchestrator per payload.

    Args:
        settings: Validated runtime settings.

    Returns:
        BuildJobFactory: Callable accepting a payload and a log sink.

    Raises:
        ValueError: Raised when settings values are invalid.
    """

    path_layout = PathLayout(root_dir=Path(settings.builder_root_dir))
    source_control = bootstrap_create_source_control(settings)
    artifact_uploader = HttpArtifactUploader(
        upload_url=settings.artifact_upload_url,
        timeout_seconds=settings.artifact_upload_timeout_seconds,
    )
    orchestrator_config = BuildOrchestratorConfig(
        archive_stagger_seconds=settings.archive_stagger_seconds,
        primary_platform=settings.primary_platform,
        build_tool_executable=settings.build_tool_executable,
    )

    def create_build_job(payload: BuildPayload, log_sink: LogSink) -> BuildJobOrchestrator:
        return BuildJobOrchestrator(
            payload=payload,
            path_layout=path_layout,
            source_control=source_control,
            build_executor=ProcessExecutor(config=PROCESS_CONFIG_XCODEBUILD),
            artifact_uploader=artifact_uploader,
            log_sink=log_sink,
            config=orchestrator_config,
        )

    return create_build_job


def bootstrap_create_application(settings: AppSettings | None = None) -> FastAPI:
    """Assemble the runtime application after validating startup configuration.

    Args:
        settings: Optional preloaded settings; loaded from environment when omitted.

    Returns:
        FastAPI: Fully initialized FastAPI application instance.

    Raises:
        SettingsLoadError: Raised when startup configuration validation fails.
    """

    resolved_settings = settings or config_load_settings()
    engine = db_create_engine(database_url=resolved_settings.database_url)
    build_run_repository = SQLAlchemyBuildRunService(engine=engine)
    build_job_manager = BuildJobManager(
        job_factory=bootstrap_create_job_factory(resolved_settings),
        build_run_repository=build_run_repository,
        build_log_repository=SQLAlchemyBuildLogService(engine=engine),
    )
    return create_api_application(
        settings=resolved_settings,
        db_health_service=SQLAlchemyDatabaseHealthService(engine=engine),
        build_run_repository=build_run_repository,
        build_job_manager=build_job_manager,
        source_control=bootstrap_create_source_control(resolved_settings),
    )
