"""Job-layer build orchestrator driving clone, resolve, archive, export and cleanup stages."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Coroutine, Iterable
from contextlib import aclosing
from dataclasses import dataclass
import logging
from pathlib import Path
import shutil
from typing import Any, AsyncIterator, Final

from release_builder.adapters import ArtifactUploaderPort, CommandExecutorPort, SourceControlPort
from release_builder.build import (
    BuildCommandKind,
    BuildCommandParameters,
    PathLayout,
    build_command_render,
    build_update_project_versions,
    build_write_export_options,
    path_ensure_dir,
    path_ensure_parent,
    path_find_file,
)
from release_builder.domain import (
    BuildJobCancelledError,
    BuildPayload,
    DuplicateExportKindError,
    EmptyExportKindSetError,
    ExportKind,
    JobState,
    LogCategory,
    LogLevel,
    Platform,
    ProgressEvent,
    domain_build_log_entry,
)

from .interfaces import BuildJobPort, JobExecutionResult, LogSink, ProgressSink

logger = logging.getLogger(__name__)

SleepFunction = Callable[[float], Awaitable[None]]

DEFAULT_ARCHIVE_STAGGER_SECONDS: Final[float] = 60 * 0.3

PROGRESS_STARTED: Final[float] = 0.05
PROGRESS_CLONED: Final[float] = 0.20
PROGRESS_RESOLVED: Final[float] = 0.35
PROGRESS_ARCHIVE_STARTED: Final[float] = 0.40
PROGRESS_ARCHIVED: Final[float] = 0.90
PROGRESS_CLEANED_UP: Final[float] = 0.95
PROGRESS_FINISHED: Final[float] = 1.0

_LOGGING_LEVELS: Final[dict[LogLevel, int]] = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}

_STATE_ORDER: Final[tuple[JobState, ...]] = (
    JobState.IDLE,
    JobState.CLONING,
    JobState.RESOLVING_DEPENDENCIES,
    JobState.ARCHIVING,
    JobState.EXPORTING,
    JobState.CLEANING_UP,
)


@dataclass(frozen=True)
class BuildOrchestratorConfig:
    """Configuration values for build job execution.

    Attributes:
        archive_stagger_seconds: Delay multiplier applied per platform index before archiving.
        primary_platform: Only platform that receives testing distribution exports.
        build_tool_executable: Build tool binary used in rendered commands.
    """

    archive_stagger_seconds: float = DEFAULT_ARCHIVE_STAGGER_SECONDS
    primary_platform: Platform = Platform.IOS
    build_tool_executable: str = "xcodebuild"


class BuildJobOrchestrator(BuildJobPort):
    """Concrete orchestrator for exactly one build attempt.

    The instance exclusively owns job state. Platform archives and export
    kinds run as child tasks of the task executing `job_run`; cancelling that
    task, or calling `job_cancel`, cancels every child, terminates running
    processes and still performs cleanup once.
    """

    def __init__(
        self,
        payload: BuildPayload,
        path_layout: PathLayout,
        source_control: SourceControlPort,
        build_executor: CommandExecutorPort,
        artifact_uploader: ArtifactUploaderPort,
        log_sink: LogSink,
        config: BuildOrchestratorConfig | None = None,
        sleep: SleepFunction = asyncio.sleep,
    ):
        """Initialize build orchestrator dependencies.

        Args:
            payload: Immutable build request.
            path_layout: Filesystem layout for build directories.
            source_control: Source-control client.
            build_executor: Process executor for build tool commands.
            artifact_uploader: Uploader for testing distribution artifacts.
            log_sink: Append-only log entry sink.
            config: Optional orchestration configuration.
            sleep: Awaitable sleep used for archive staggering.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when dependencies or config values are invalid.
        """

        if payload is None:
            raise ValueError("payload must not be None")
        if path_layout is None:
            raise ValueError("path_layout must not be None")
        if source_control is None:
            raise ValueError("source_control must not be None")
        if build_executor is None:
            raise ValueError("build_executor must not be None")
        if artifact_uploader is None:
            raise ValueError("artifact_uploader must not be None")
        if log_sink is None:
            raise ValueError("log_sink must not be None")
        resolved_config = config or BuildOrchestratorConfig()
        if resolved_config.archive_stagger_seconds < 0:
            raise ValueError("config.archive_stagger_seconds must not be negative")
        if not resolved_config.build_tool_executable.strip():
            raise ValueError("config.build_tool_executable must not be blank")

        self._payload = payload
        self._paths = path_layout
        self._source_control = source_control
        self._build_executor = build_executor
        self._artifact_uploader = artifact_uploader
        self._log_sink = log_sink
        self._config = resolved_config
        self._sleep = sleep

        self._state = JobState.IDLE
        self._progress = 0.0
        self._progress_sink: ProgressSink | None = None
        self._run_task: asyncio.Task[Any] | None = None
        self._cancel_requested = False
        self._cleanup_done = False

    @property
    def payload(self) -> BuildPayload:
        return self._payload

    @property
    def job_state(self) -> JobState:
        """Return current job state."""

        return self._state

    @property
    def job_progress(self) -> float:
        """Return last emitted progress fraction."""

        return self._progress

    async def job_run(self, progress_sink: ProgressSink | None = None) -> JobExecutionResult:
        """Run every pipeline stage for the payload.

        Args:
            progress_sink: Optional callback receiving progress events.

        Returns:
            JobExecutionResult: Result with `completed` state.

        Raises:
            RuntimeError: Raised when the job has already been started.
            asyncio.CancelledError: Raised when the job was cancelled.
            Exception: Stage failure, re-raised unchanged after cleanup.
        """

        if self._state is not JobState.IDLE or self._run_task is not None:
            raise RuntimeError("build job can only be run once")

        self._run_task = asyncio.current_task()
        self._progress_sink = progress_sink
        try:
            await self._job_execute_stages()
        except asyncio.CancelledError:
            self._job_log(LogCategory.CLEANUP, "BUILD CANCELLED", LogLevel.WARNING)
            await self._job_cleanup()
            self._job_transition(JobState.CANCELLED)
            raise
        except Exception as error:
            self._job_log(
                LogCategory.CLEANUP,
                f"BUILD FAILED\n • Error: {error}\n • Error Type: {type(error).__name__}",
                LogLevel.ERROR,
            )
            # A cancellation arriving during cleanup does not replace the stage error.
            await self._job_cleanup()
            self._job_transition(JobState.FAILED)
            raise

        return JobExecutionResult(build_id=self._payload.build_id, state=self._state)

    async def job_stream_progress(self) -> AsyncIterator[ProgressEvent]:
        """Run the job in a child task and yield its progress events.

        Closing the iterator early cancels the job and waits for its cleanup.

        Returns:
            AsyncIterator[ProgressEvent]: Progress events ending with the finished event.

        Raises:
            BuildJobCancelledError: Raised when the job was cancelled.
            Exception: Stage failure, re-raised unchanged after cleanup.
        """

        event_queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue()
        run_task = asyncio.create_task(self.job_run(progress_sink=event_queue.put_nowait))
        run_task.add_done_callback(lambda _task: event_queue.put_nowait(None))

        try:
            while True:
                event = await event_queue.get()
                if event is None:
                    break
                yield event
        finally:
            if not run_task.done():
                self.job_cancel()
                await asyncio.gather(run_task, return_exceptions=True)

        if run_task.cancelled():
            raise BuildJobCancelledError(f"build {self._payload.build_id} was cancelled")
        error = run_task.exception()
        if error is not None:
            raise error

    def job_cancel(self) -> None:
        """Request cancellation of the running job.

        Cancellation of a job that has not started takes effect at its first
        stage boundary. Cancelling a finished job does nothing.

        Returns:
            None: Cancellation is requested as side effect.

        Raises:
            RuntimeError: This method does not raise runtime errors.
        """

        if self._state.is_terminal:
            return
        self._cancel_requested = True
        if self._run_task is not None and not self._run_task.done():
            self._run_task.cancel()

    async def _job_execute_stages(self) -> None:
        payload = self._payload
        self._job_raise_if_cancel_requested()
        self._job_validate_request()
        self._job_log(
            LogCategory.CLONE,
            "BUILD STARTED\n"
            f" • Project: {payload.project.name}\n"
            f" • Scheme: {payload.scheme.name}\n"
            f" • Version: {payload.version.display_string}\n"
            f" • Platforms: {', '.join(platform.value for platform in payload.scheme.platforms)}\n"
            f" • Export kinds: {', '.join(kind.value for kind in payload.export_kinds)}",
        )
        self._job_emit_progress(PROGRESS_STARTED, "Starting build")

        self._job_transition(JobState.CLONING)
        await self._job_clone()
        self._job_raise_if_cancel_requested()
        self._job_emit_progress(PROGRESS_CLONED, "Repository cloned")

        self._job_transition(JobState.RESOLVING_DEPENDENCIES)
        await self._job_resolve_dependencies()
        self._job_raise_if_cancel_requested()
        self._job_emit_progress(PROGRESS_RESOLVED, "Dependencies resolved")

        self._job_emit_progress(PROGRESS_ARCHIVE_STARTED, "Archiving")
        self._job_transition(JobState.ARCHIVING)
        await self._job_archive_all_platforms()
        self._job_raise_if_cancel_requested()
        self._job_emit_progress(PROGRESS_ARCHIVED, "Archives exported")

        if await self._job_cleanup():
            raise asyncio.CancelledError()
        self._job_emit_progress(PROGRESS_CLEANED_UP, "Cleaned up")

        self._job_log(LogCategory.CLEANUP, f"BUILD COMPLETED\n • Version: {payload.version.display_string}")
        self._job_transition(JobState.COMPLETED)
        self._job_emit_progress(PROGRESS_FINISHED, "Build completed", is_finished=True)

    def _job_validate_request(self) -> None:
        """Reject malformed platform and export kind lists before any stage runs.

        Returns:
            None: Validation has no return value.

        Raises:
            ValueError: Raised when the scheme has no platforms or repeats one.
            DuplicateExportKindError: Raised when an export kind was requested more than once.
        """

        payload = self._payload
        platforms = payload.scheme.platforms
        if not platforms:
            raise ValueError(f"scheme {payload.scheme.name} has no platforms")
        if len(set(platforms)) != len(platforms):
            raise ValueError(f"scheme {payload.scheme.name} lists a platform more than once")
        if len(set(payload.export_kinds)) != len(payload.export_kinds):
            raise DuplicateExportKindError(
                f"duplicate export kinds requested: {', '.join(kind.value for kind in payload.export_kinds)}"
            )

    async def _job_clone(self) -> None:
        payload = self._payload
        checkout_dir = self._paths.path_source_checkout(payload)
        self._job_log(
            LogCategory.CLONE,
            "CLONE STAGE: Starting repository clone\n"
            f" • Repository: {payload.project.git_remote_url}\n"
            f" • Target tag: {payload.version.tag_name}\n"
            f" • Clone path: {checkout_dir}",
        )
        try:
            payload.version.version_validate()
            path_ensure_parent(checkout_dir)
            if payload.source.branch_name is not None:
                self._job_log(
                    LogCategory.CLONE,
                    f"Cloning branch {payload.source.branch_name} and pushing tag {payload.version.tag_name}",
                    LogLevel.DEBUG,
                )
                await self._source_control.scm_clone_tag_and_push(
                    version=payload.version,
                    branch=payload.source.branch_name,
                    remote_url=payload.project.git_remote_url,
                    checkout_dir=checkout_dir,
                )
            else:
                self._job_log(LogCategory.CLONE, f"Cloning tag {payload.version.tag_name}", LogLevel.DEBUG)
                await self._source_control.scm_clone(
                    remote_url=payload.project.git_remote_url,
                    checkout_dir=checkout_dir,
                    ref=payload.version.tag_name,
                    shallow=True,
                )
            update_result = build_update_project_versions(
                checkout_dir=checkout_dir,
                version=payload.version.version,
                build_number=payload.version.build_number,
            )
        except Exception as error:
            self._job_log(LogCategory.CLONE, f"CLONE STAGE: Failed\n • Error: {error}", LogLevel.ERROR)
            raise

        self._job_log(
            LogCategory.CLONE,
            "CLONE STAGE: Completed\n"
            f" • Manifests updated: {len(update_result.updated_files)}\n"
            f" • Manifests skipped: {len(update_result.skipped_files)}",
        )

    async def _job_resolve_dependencies(self) -> None:
        payload = self._payload
        command = self._job_render_command(BuildCommandKind.RESOLVE_DEPENDENCIES, payload.scheme.platforms[0])
        self._job_log(LogCategory.RESOLVE_DEPENDENCIES, "RESOLVE STAGE: Resolving package dependencies")
        self._job_log(LogCategory.RESOLVE_DEPENDENCIES, f"Command: {command}", LogLevel.DEBUG)
        try:
            await self._build_executor.executor_run_output(command)
        except Exception as error:
            self._job_log(
                LogCategory.RESOLVE_DEPENDENCIES,
                f"RESOLVE STAGE: Failed\n • Error: {error}",
                LogLevel.ERROR,
            )
            raise
        self._job_log(LogCategory.RESOLVE_DEPENDENCIES, "RESOLVE STAGE: Completed")

    async def _job_archive_all_platforms(self) -> None:
        platforms = self._payload.scheme.platforms
        # Written once here; concurrent exports only read them.
        for export_kind in self._payload.export_kinds:
            build_write_export_options(export_kind, self._paths.path_export_options(self._payload, export_kind))

        self._job_log(
            LogCategory.ARCHIVE,
            "ARCHIVE STAGE: Starting archives\n"
            f" • Platforms: {', '.join(platform.value for platform in platforms)}\n"
            f" • Stagger: {self._config.archive_stagger_seconds:g}s per platform",
        )
        try:
            await _job_gather_first_error(
                self._job_archive_platform(index, platform) for index, platform in enumerate(platforms)
            )
        except asyncio.CancelledError:
            self._job_log(LogCategory.ARCHIVE, "ARCHIVE STAGE: Cancelled", LogLevel.WARNING)
            raise
        except Exception as error:
            self._job_log(LogCategory.ARCHIVE, f"ARCHIVE STAGE: Failed\n • Error: {error}", LogLevel.ERROR)
            raise
        self._job_log(LogCategory.ARCHIVE, "ARCHIVE STAGE: All platforms archived and exported")

    async def _job_archive_platform(self, index: int, platform: Platform) -> None:
        delay_seconds = index * self._config.archive_stagger_seconds
        if delay_seconds > 0:
            self._job_log(
                LogCategory.ARCHIVE,
                f"Waiting {delay_seconds:g}s before archiving {platform.value}",
                LogLevel.DEBUG,
            )
            await self._sleep(delay_seconds)
        self._job_raise_if_cancel_requested()

        archive_path = path_ensure_parent(self._paths.path_archive(self._payload, platform))
        path_ensure_dir(self._paths.path_intermediates(self._payload))
        command = self._job_render_command(BuildCommandKind.ARCHIVE, platform)
        self._job_log(LogCategory.ARCHIVE, f"Archiving {platform.value}\n • Archive path: {archive_path}")
        self._job_log(LogCategory.ARCHIVE, f"Command: {command}", LogLevel.DEBUG)

        async with aclosing(self._build_executor.executor_run_streaming(command)) as output_lines:
            async for output_line in output_lines:
                self._job_log(LogCategory.ARCHIVE, output_line, LogLevel.DEBUG)

        self._job_log(LogCategory.ARCHIVE, f"Archive completed for {platform.value}")
        await self._job_export_platform(platform)

    async def _job_export_platform(self, platform: Platform) -> None:
        try:
            export_kinds = self._job_select_export_kinds(platform)
            self._job_transition(JobState.EXPORTING)
            self._job_log(
                LogCategory.EXPORT,
                f"EXPORT STAGE: Exporting {platform.value}\n"
                f" • Export kinds: {', '.join(kind.value for kind in export_kinds)}",
            )
            await _job_gather_first_error(self._job_export_kind(platform, kind) for kind in export_kinds)
        except Exception as error:
            self._job_log(
                LogCategory.EXPORT,
                f"EXPORT STAGE: Failed for {platform.value}\n • Error: {error}",
                LogLevel.ERROR,
            )
            raise

    def _job_select_export_kinds(self, platform: Platform) -> list[ExportKind]:
        """Return requested export kinds applicable to one platform.

        Args:
            platform: Platform whose archive is exported.

        Returns:
            list[ExportKind]: Export kinds in request order.

        Raises:
            EmptyExportKindSetError: Raised when no kind applies to the platform.
        """

        export_kinds = list(self._payload.export_kinds)
        if platform is not self._config.primary_platform and ExportKind.RELEASE_TESTING in export_kinds:
            self._job_log(
                LogCategory.EXPORT,
                f"Skipping {ExportKind.RELEASE_TESTING.value} export for {platform.value}",
                LogLevel.DEBUG,
            )
            export_kinds = [kind for kind in export_kinds if kind is not ExportKind.RELEASE_TESTING]
        if not export_kinds:
            raise EmptyExportKindSetError(f"no export kinds remain for platform {platform.value}")
        return export_kinds

    async def _job_export_kind(self, platform: Platform, export_kind: ExportKind) -> None:
        export_path = self._paths.path_export(self._payload, export_kind)
        if export_path is not None:
            path_ensure_dir(export_path)
        command = self._job_render_command(BuildCommandKind.EXPORT_ARCHIVE, platform, export_kind=export_kind)
        self._job_log(LogCategory.EXPORT, f"Command: {command}", LogLevel.DEBUG)

        await self._build_executor.executor_run_output(command)
        self._job_log(LogCategory.EXPORT, f"Export completed for {platform.value} ({export_kind.value})")

        if not export_kind.is_testing_distribution or export_path is None:
            return
        artifact_path = path_find_file(f"{self._payload.scheme.name}.ipa", export_path) or export_path
        self._job_log(LogCategory.EXPORT, f"Uploading {artifact_path}")
        upload_identifier = await self._artifact_uploader.uploader_upload(
            project=self._payload.project,
            version=self._payload.version,
            artifact_path=artifact_path,
        )
        self._job_log(LogCategory.EXPORT, f"Upload completed\n • Identifier: {upload_identifier}")

    def _job_render_command(
        self,
        kind: BuildCommandKind,
        platform: Platform,
        export_kind: ExportKind | None = None,
    ) -> str:
        payload = self._payload
        return build_command_render(
            BuildCommandParameters(
                kind=kind,
                scheme=payload.scheme,
                version=payload.version,
                platform=platform,
                project_path=self._paths.path_project_file(payload),
                archive_path=self._paths.path_archive(payload, platform),
                intermediates_path=self._paths.path_intermediates(payload),
                export_kind=export_kind,
                export_options_path=(
                    self._paths.path_export_options(payload, export_kind) if export_kind is not None else None
                ),
                export_path=self._paths.path_export(payload, export_kind) if export_kind is not None else None,
            ),
            executable=self._config.build_tool_executable,
        )

    async def _job_cleanup(self) -> bool:
        """Run cleanup once to completion, even when cancelled while it runs.

        Returns:
            bool: Whether a cancellation request arrived during cleanup.

        Raises:
            RuntimeError: Cleanup failures are logged, not raised.
        """

        if self._cleanup_done:
            return False
        self._cleanup_done = True
        self._job_transition(JobState.CLEANING_UP)
        self._job_log(LogCategory.CLEANUP, "CLEANUP STAGE: Starting")

        removal_task = asyncio.ensure_future(self._job_remove_build_directories())
        interrupted = False
        while True:
            try:
                await asyncio.shield(removal_task)
                break
            except asyncio.CancelledError:
                if removal_task.cancelled():
                    raise
                interrupted = True

        self._job_log(LogCategory.CLEANUP, "CLEANUP STAGE: Completed")
        return interrupted

    async def _job_remove_build_directories(self) -> None:
        targets: tuple[tuple[str, Path], ...] = (
            ("intermediates", self._paths.path_intermediates(self._payload)),
            ("source checkout", self._paths.path_source_checkout(self._payload)),
        )
        for label, target_path in targets:
            if not target_path.exists():
                continue
            try:
                await asyncio.to_thread(shutil.rmtree, target_path)
            except OSError as error:
                self._job_log(
                    LogCategory.CLEANUP,
                    f"Could not remove {label} at {target_path}: {error}",
                    LogLevel.WARNING,
                )
                continue
            self._job_log(LogCategory.CLEANUP, f"Removed {label} at {target_path}", LogLevel.DEBUG)

    def _job_raise_if_cancel_requested(self) -> None:
        if self._cancel_requested:
            raise asyncio.CancelledError()

    def _job_transition(self, state: JobState) -> None:
        """Move to `state` unless already terminal or already past it."""

        if self._state.is_terminal:
            return
        if not state.is_terminal and _STATE_ORDER.index(state) <= _STATE_ORDER.index(self._state):
            return
        logger.debug("build %s state %s -> %s", self._payload.build_id, self._state.value, state.value)
        self._state = state

    def _job_emit_progress(self, progress: float, message: str, is_finished: bool = False) -> None:
        self._progress = max(self._progress, progress)
        if self._progress_sink is None:
            return
        try:
            self._progress_sink(ProgressEvent(progress=self._progress, message=message, is_finished=is_finished))
        except Exception:  # pylint: disable=broad-exception-caught
            logger.exception("progress sink rejected event for build %s", self._payload.build_id)

    def _job_log(self, category: LogCategory, content: str, level: LogLevel = LogLevel.INFO) -> None:
        """Mirror one entry to the module logger and hand it to the log sink.

        A failing sink never interrupts the job; the entry stays in the module log.
        """

        logger.log(_LOGGING_LEVELS[level], "[%s] %s", category.value, content)
        entry = domain_build_log_entry(self._payload.build_id, category, content, level)
        try:
            self._log_sink(entry)
        except Exception:  # pylint: disable=broad-exception-caught
            logger.exception("log sink rejected %s entry for build %s", level.value, self._payload.build_id)


async def _job_gather_first_error(coroutines: Iterable[Coroutine[Any, Any, None]]) -> None:
    """Run coroutines as sibling tasks; the first failure cancels the rest and is re-raised unchanged."""

    tasks = [asyncio.create_task(coroutine) for coroutine in coroutines]
    if not tasks:
        return
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)

    for task in tasks:
        if task in done and not task.cancelled() and task.exception() is not None:
            raise task.exception()
    if any(task.cancelled() for task in tasks):
        raise asyncio.CancelledError()
