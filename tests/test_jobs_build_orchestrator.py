"""Regression tests for build orchestrator stage sequencing, cancellation and cleanup."""

from __future__ import annotations

import asyncio
from contextlib import aclosing
from pathlib import Path
import shutil
import threading

import pytest

from release_builder.adapters import CommandFailedError, PatternMatchError, ShellResult, TagAlreadyExistsError
from release_builder.build import PathLayout
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
    ProjectDescriptor,
    SchemeDescriptor,
    SourceSelection,
    Version,
    VersionValidationError,
)
from release_builder.jobs import (
    DEFAULT_ARCHIVE_STAGGER_SECONDS,
    BuildJobOrchestrator,
    BuildLogBuffer,
    BuildOrchestratorConfig,
)


class _SourceControlStub:
    """Source-control stub creating checkout directories instead of cloning."""

    def __init__(self, existing_tags: set[str] | None = None):
        """Initialize source-control stub.

        Args:
            existing_tags: Tag names reported as already present on the remote.

        Returns:
            None: Initializer does not return values.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        self.existing_tags = existing_tags or set()
        self.clone_calls: list[tuple[str, Path, str]] = []
        self.tag_calls: list[tuple[str, str]] = []

    async def scm_clone(self, remote_url: str, checkout_dir: Path, ref: str, shallow: bool = True) -> None:
        """Record clone and create an empty checkout.

        Args:
            remote_url: Remote repository URL.
            checkout_dir: Destination directory.
            ref: Tag or branch.
            shallow: Shallow clone flag.

        Returns:
            None: Checkout is created as side effect.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        _ = shallow
        self.clone_calls.append((remote_url, checkout_dir, ref))
        checkout_dir.mkdir(parents=True, exist_ok=True)
        (checkout_dir / "project.pbxproj").write_text("MARKETING_VERSION = 0.0.1;\n", encoding="utf-8")

    async def scm_clone_tag_and_push(self, version: Version, branch: str, remote_url: str, checkout_dir: Path) -> None:
        """Reject existing tags, otherwise clone branch and record the pushed tag.

        Args:
            version: Version to tag.
            branch: Branch to clone.
            remote_url: Remote repository URL.
            checkout_dir: Destination directory.

        Returns:
            None: Checkout is created as side effect.

        Raises:
            TagAlreadyExistsError: Raised when the tag is configured as existing.
        """

        if version.tag_name in self.existing_tags:
            raise TagAlreadyExistsError(version.tag_name)
        await self.scm_clone(remote_url=remote_url, checkout_dir=checkout_dir, ref=branch)
        self.tag_calls.append((branch, version.tag_name))

    async def scm_fetch_versions(self, remote_url: str) -> list[Version]:
        """Return no versions."""

        _ = remote_url
        return []

    async def scm_fetch_branches(self, remote_url: str) -> list:
        """Return no branches."""

        _ = remote_url
        return []


class _BuildExecutorStub:
    """Build tool executor stub recording commands with optional blocking and failures."""

    def __init__(self, failing_fragment: str | None = None, pattern_failing_fragment: str | None = None):
        """Initialize executor stub.

        Args:
            failing_fragment: Output commands containing this text raise CommandFailedError.
            pattern_failing_fragment: Streaming commands containing this text raise PatternMatchError.

        Returns:
            None: Initializer does not return values.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        self.failing_fragment = failing_fragment
        self.pattern_failing_fragment = pattern_failing_fragment
        self.streaming_commands: list[str] = []
        self.output_commands: list[str] = []
        self.archive_gate: asyncio.Event | None = None
        self.archive_started: asyncio.Event | None = None
        self.archive_cancelled = False

    async def executor_run_streaming(self, command: str, cwd: Path | None = None):
        """Record archive command, optionally block, then yield one output line.

        Args:
            command: Shell command line.
            cwd: Optional working directory.

        Returns:
            AsyncIterator[str]: One synthetic output line.

        Raises:
            PatternMatchError: Raised when the command matches the pattern failure fragment.
        """

        _ = cwd
        self.streaming_commands.append(command)
        if self.pattern_failing_fragment is not None and self.pattern_failing_fragment in command:
            raise PatternMatchError(command=command, pattern="error:", output="error: signing failed")
        if self.archive_gate is not None:
            if self.archive_started is not None:
                self.archive_started.set()
            try:
                await self.archive_gate.wait()
            except asyncio.CancelledError:
                self.archive_cancelled = True
                raise
        yield "** ARCHIVE SUCCEEDED **"

    async def executor_run_complete(self, command: str, cwd: Path | None = None) -> ShellResult:
        """Record command and return a clean result."""

        _ = cwd
        self.output_commands.append(command)
        return ShellResult(stdout="", stderr="", exit_code=0)

    async def executor_run_output(self, command: str, cwd: Path | None = None) -> str:
        """Record command and return empty output unless configured to fail.

        Args:
            command: Shell command line.
            cwd: Optional working directory.

        Returns:
            str: Empty output.

        Raises:
            CommandFailedError: Raised when the command matches the failing fragment.
        """

        _ = cwd
        self.output_commands.append(command)
        if self.failing_fragment is not None and self.failing_fragment in command:
            raise CommandFailedError(command=command, exit_code=65, stderr="resolution failed")
        return ""

    @property
    def export_commands(self) -> list[str]:
        return [command for command in self.output_commands if command.endswith("-exportArchive")]


class _UploaderStub:
    """Artifact uploader stub recording upload calls."""

    def __init__(self):
        self.upload_calls: list[tuple[str, Version, Path]] = []

    async def uploader_upload(self, project: ProjectDescriptor, version: Version, artifact_path: Path) -> str:
        """Record upload and return a deterministic identifier.

        Args:
            project: Project descriptor.
            version: Built version.
            artifact_path: Artifact path.

        Returns:
            str: Upload identifier.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        self.upload_calls.append((project.name, version, artifact_path))
        return "upload-1"


class _SleepRecorder:
    """Awaitable sleep replacement recording requested delays."""

    def __init__(self, block: bool = False):
        self.block = block
        self.delays: list[float] = []
        self.cancelled = False

    async def __call__(self, delay_seconds: float) -> None:
        """Record delay, optionally blocking until cancelled.

        Args:
            delay_seconds: Requested delay.

        Returns:
            None: Returns immediately unless blocking.

        Raises:
            asyncio.CancelledError: Raised when a blocking sleep is cancelled.
        """

        self.delays.append(delay_seconds)
        if not self.block:
            return
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise


class _RejectingLogSink:
    """Log sink failing for one level, like a locked database, and buffering the rest."""

    def __init__(self, log_buffer: BuildLogBuffer, rejected_level: LogLevel):
        self.log_buffer = log_buffer
        self.rejected_level = rejected_level
        self.rejected_count = 0

    def __call__(self, entry) -> None:
        """Buffer entry or raise for the rejected level.

        Args:
            entry: Log entry.

        Returns:
            None: Entry is buffered as side effect.

        Raises:
            RuntimeError: Raised for entries at the rejected level.
        """

        if entry.level is self.rejected_level:
            self.rejected_count += 1
            raise RuntimeError("Failed to append build log entry: database is locked")
        self.log_buffer(entry)


class _Harness:
    """Orchestrator wiring with every collaborator stubbed."""

    def __init__(
        self,
        tmp_path: Path,
        platforms: tuple[Platform, ...] = (Platform.IOS,),
        export_kinds: tuple[ExportKind, ...] = (ExportKind.APP_STORE,),
        source: SourceSelection | None = None,
        version: Version | None = None,
        source_control: _SourceControlStub | None = None,
        executor: _BuildExecutorStub | None = None,
        sleep: _SleepRecorder | None = None,
        log_sink=None,
    ):
        """Initialize harness collaborators and orchestrator.

        Args:
            tmp_path: Temporary builder root.
            platforms: Scheme platforms.
            export_kinds: Requested export kinds.
            source: Source selection.
            version: Target version.
            source_control: Optional source-control stub.
            executor: Optional executor stub.
            sleep: Optional sleep recorder.
            log_sink: Optional log sink used instead of the log buffer.

        Returns:
            None: Initializer does not return values.

        Raises:
            RuntimeError: This helper does not raise runtime errors.
        """

        self.layout = PathLayout(root_dir=tmp_path)
        self.payload = BuildPayload(
            project=ProjectDescriptor(
                name="Demo",
                git_remote_url="git@example.com:demo.git",
                xcodeproj_name="Demo",
                bundle_identifier="com.example.demo",
            ),
            scheme=SchemeDescriptor(name="Demo", platforms=platforms),
            version=version or Version("1.0.0", 3, "c0ffee1234"),
            source=source or SourceSelection.from_tag(),
            export_kinds=export_kinds,
        )
        self.source_control = source_control or _SourceControlStub()
        self.executor = executor or _BuildExecutorStub()
        self.uploader = _UploaderStub()
        self.sleep = sleep or _SleepRecorder()
        self.log_buffer = BuildLogBuffer()
        self.progress_events: list[ProgressEvent] = []
        self.orchestrator = BuildJobOrchestrator(
            payload=self.payload,
            path_layout=self.layout,
            source_control=self.source_control,
            build_executor=self.executor,
            artifact_uploader=self.uploader,
            log_sink=log_sink or self.log_buffer,
            config=BuildOrchestratorConfig(),
            sleep=self.sleep,
        )

    def run(self):
        """Run the orchestrator to completion on a fresh event loop."""

        return asyncio.run(self.orchestrator.job_run(progress_sink=self.progress_events.append))

    def log_contents(self, category: LogCategory | None = None, level: LogLevel | None = None) -> list[str]:
        return [entry.content for entry in self.log_buffer.buffer_snapshot(category=category, level=level)]

    def count_logs(self, fragment: str) -> int:
        return sum(1 for content in self.log_contents() if fragment in content)


def test_orchestrator_completes_two_platform_store_build(tmp_path: Path) -> None:
    """Run every stage for two platforms and clean up once.

    Args:
        tmp_path: Temporary builder root.

    Returns:
        None: Assertions validate progress, commands, logs and cleanup.

    Raises:
        AssertionError: Raised when stage behavior regresses.
    """

    harness = _Harness(tmp_path, platforms=(Platform.IOS, Platform.MACOS), export_kinds=(ExportKind.APP_STORE,))

    result = harness.run()

    assert result.state is JobState.COMPLETED
    assert result.build_id == harness.payload.build_id
    assert harness.orchestrator.job_state is JobState.COMPLETED
    assert [event.progress for event in harness.progress_events] == [0.05, 0.20, 0.35, 0.40, 0.90, 0.95, 1.0]
    assert harness.progress_events[-1].is_finished
    assert not any(event.is_finished for event in harness.progress_events[:-1])

    assert harness.source_control.clone_calls == [
        ("git@example.com:demo.git", harness.layout.path_source_checkout(harness.payload), "v1.0.0_3")
    ]
    assert harness.executor.output_commands[0].endswith("-resolvePackageDependencies")
    assert len(harness.executor.streaming_commands) == 2
    assert len(harness.executor.export_commands) == 2
    assert harness.uploader.upload_calls == []
    assert harness.sleep.delays == [DEFAULT_ARCHIVE_STAGGER_SECONDS]

    assert harness.count_logs("Export completed for") == 2
    assert harness.count_logs("CLEANUP STAGE: Starting") == 1
    assert harness.count_logs("BUILD COMPLETED") == 1
    assert harness.log_contents(level=LogLevel.ERROR) == []
    assert not harness.layout.path_source_checkout(harness.payload).exists()
    assert not harness.layout.path_intermediates(harness.payload).exists()
    assert harness.layout.path_export_options(harness.payload, ExportKind.APP_STORE).is_file()


def test_orchestrator_rewrites_manifest_versions_after_clone(tmp_path: Path) -> None:
    """Log the manifest update count after cloning."""

    harness = _Harness(tmp_path)

    harness.run()

    assert harness.count_logs("Manifests updated: 1") == 1


def test_orchestrator_exports_testing_distribution_for_primary_platform_only(tmp_path: Path) -> None:
    """Drop testing distribution exports for secondary platforms and upload once.

    Args:
        tmp_path: Temporary builder root.

    Returns:
        None: Assertions validate export filtering and upload.

    Raises:
        AssertionError: Raised when secondary platforms export testing builds.
    """

    harness = _Harness(
        tmp_path,
        platforms=(Platform.IOS, Platform.MACOS),
        export_kinds=(ExportKind.RELEASE_TESTING, ExportKind.APP_STORE),
    )

    harness.run()

    testing_exports = [command for command in harness.executor.export_commands if "release-testing" in command]
    assert len(testing_exports) == 1
    assert str(harness.layout.path_archive(harness.payload, Platform.IOS)) in testing_exports[0]
    assert len(harness.executor.export_commands) == 3
    assert harness.uploader.upload_calls == [
        ("Demo", harness.payload.version, harness.layout.path_export(harness.payload, ExportKind.RELEASE_TESTING))
    ]
    assert harness.count_logs("Skipping release-testing export for macOS") == 1
    assert harness.count_logs("Upload completed") == 1


def test_orchestrator_fails_when_no_export_kind_applies(tmp_path: Path) -> None:
    """Fail a secondary-platform build that only requests testing distribution."""

    harness = _Harness(tmp_path, platforms=(Platform.MACOS,), export_kinds=(ExportKind.RELEASE_TESTING,))

    with pytest.raises(EmptyExportKindSetError):
        harness.run()

    assert harness.orchestrator.job_state is JobState.FAILED
    assert harness.executor.export_commands == []
    assert any("EXPORT STAGE: Failed" in content for content in harness.log_contents(LogCategory.EXPORT, LogLevel.ERROR))
    assert harness.count_logs("CLEANUP STAGE: Starting") == 1


def test_orchestrator_rejects_duplicate_export_kinds(tmp_path: Path) -> None:
    """Fail with DuplicateExportKindError before cloning or archiving anything."""

    harness = _Harness(tmp_path, export_kinds=(ExportKind.APP_STORE, ExportKind.APP_STORE))

    with pytest.raises(DuplicateExportKindError):
        harness.run()

    assert harness.source_control.clone_calls == []
    assert harness.executor.output_commands == []
    assert harness.executor.streaming_commands == []
    assert harness.orchestrator.job_state is JobState.FAILED
    assert harness.progress_events == []


def test_orchestrator_cancel_mid_archive_cleans_up_once(tmp_path: Path) -> None:
    """Cancel a running archive, terminate it and clean up exactly once.

    Args:
        tmp_path: Temporary builder root.

    Returns:
        None: Assertions validate cancellation outcome.

    Raises:
        AssertionError: Raised when cancellation leaves residue or runs exports.
    """

    harness = _Harness(tmp_path)

    async def _scenario() -> None:
        harness.executor.archive_gate = asyncio.Event()
        harness.executor.archive_started = asyncio.Event()
        run_task = asyncio.create_task(harness.orchestrator.job_run())
        await harness.executor.archive_started.wait()
        harness.orchestrator.job_cancel()
        with pytest.raises(asyncio.CancelledError):
            await run_task

    asyncio.run(_scenario())

    assert harness.orchestrator.job_state is JobState.CANCELLED
    assert harness.executor.archive_cancelled
    assert harness.executor.export_commands == []
    assert harness.count_logs("BUILD CANCELLED") == 1
    assert harness.count_logs("CLEANUP STAGE: Starting") == 1
    assert not harness.layout.path_source_checkout(harness.payload).exists()


def test_orchestrator_cancel_after_completion_is_noop(tmp_path: Path) -> None:
    """Keep completed state when cancellation arrives after the job finished."""

    harness = _Harness(tmp_path)
    harness.run()

    harness.orchestrator.job_cancel()

    assert harness.orchestrator.job_state is JobState.COMPLETED


def test_orchestrator_stream_reports_cancellation(tmp_path: Path) -> None:
    """Surface cancellation from the progress stream as BuildJobCancelledError.

    Args:
        tmp_path: Temporary builder root.

    Returns:
        None: Assertions validate stream termination.

    Raises:
        AssertionError: Raised when the stream hides cancellation.
    """

    harness = _Harness(tmp_path)
    received_events: list[ProgressEvent] = []

    async def _scenario() -> None:
        harness.executor.archive_gate = asyncio.Event()
        harness.executor.archive_started = asyncio.Event()
        async with aclosing(harness.orchestrator.job_stream_progress()) as progress_events:
            async for event in progress_events:
                received_events.append(event)
                if event.progress >= 0.40:
                    await harness.executor.archive_started.wait()
                    harness.orchestrator.job_cancel()

    with pytest.raises(BuildJobCancelledError):
        asyncio.run(_scenario())

    assert [event.progress for event in received_events] == [0.05, 0.20, 0.35, 0.40]
    assert harness.orchestrator.job_state is JobState.CANCELLED


def test_orchestrator_stream_yields_events_until_finished(tmp_path: Path) -> None:
    """Yield every progress event and end after the finished event."""

    harness = _Harness(tmp_path)

    async def _collect() -> list[ProgressEvent]:
        async with aclosing(harness.orchestrator.job_stream_progress()) as progress_events:
            return [event async for event in progress_events]

    events = asyncio.run(_collect())

    assert events[-1].is_finished
    assert events[-1].progress == 1.0
    assert [event.progress for event in events] == sorted(event.progress for event in events)


def test_orchestrator_resolve_failure_marks_failed(tmp_path: Path) -> None:
    """Re-raise dependency resolution failures unchanged after cleanup.

    Args:
        tmp_path: Temporary builder root.

    Returns:
        None: Assertions validate failure handling.

    Raises:
        AssertionError: Raised when failure handling regresses.
    """

    harness = _Harness(tmp_path, executor=_BuildExecutorStub(failing_fragment="-resolvePackageDependencies"))

    with pytest.raises(CommandFailedError) as error_info:
        harness.run()

    assert error_info.value.exit_code == 65
    assert harness.orchestrator.job_state is JobState.FAILED
    assert harness.executor.streaming_commands == []
    resolve_errors = harness.log_contents(LogCategory.RESOLVE_DEPENDENCIES, LogLevel.ERROR)
    assert len(resolve_errors) == 1
    assert "RESOLVE STAGE: Failed" in resolve_errors[0]
    assert harness.count_logs("BUILD FAILED") == 1
    assert harness.count_logs("CLEANUP STAGE: Starting") == 1
    assert [event.progress for event in harness.progress_events] == [0.05, 0.20]


def test_orchestrator_first_archive_failure_cancels_siblings(tmp_path: Path) -> None:
    """Cancel staggered sibling archives when the first platform fails."""

    harness = _Harness(
        tmp_path,
        platforms=(Platform.IOS, Platform.MACOS),
        executor=_BuildExecutorStub(pattern_failing_fragment="generic/platform=iOS"),
        sleep=_SleepRecorder(block=True),
    )

    with pytest.raises(PatternMatchError):
        harness.run()

    assert harness.sleep.cancelled
    assert len(harness.executor.streaming_commands) == 1
    assert harness.orchestrator.job_state is JobState.FAILED
    assert harness.count_logs("ARCHIVE STAGE: Failed") == 1


def test_orchestrator_branch_build_rejects_existing_tag(tmp_path: Path) -> None:
    """Fail a branch build before any build command when the tag exists."""

    harness = _Harness(
        tmp_path,
        source=SourceSelection.from_branch("main"),
        source_control=_SourceControlStub(existing_tags={"v1.0.0_3"}),
    )

    with pytest.raises(TagAlreadyExistsError):
        harness.run()

    assert harness.executor.output_commands == []
    assert harness.executor.streaming_commands == []
    assert harness.orchestrator.job_state is JobState.FAILED
    assert len(harness.log_contents(LogCategory.CLONE, LogLevel.ERROR)) == 1
    assert harness.log_contents(level=LogLevel.WARNING) == []
    assert harness.count_logs("CLEANUP STAGE: Completed") == 1


def test_orchestrator_branch_build_tags_branch_head(tmp_path: Path) -> None:
    """Clone the branch head and push the release tag for branch builds."""

    harness = _Harness(tmp_path, source=SourceSelection.from_branch("release/1.0"))

    harness.run()

    assert harness.source_control.tag_calls == [("release/1.0", "v1.0.0_3")]
    assert harness.orchestrator.job_state is JobState.COMPLETED


def test_orchestrator_rejects_invalid_version_before_cloning(tmp_path: Path) -> None:
    """Fail version validation before any clone."""

    harness = _Harness(tmp_path, version=Version("1.0", 3))

    with pytest.raises(VersionValidationError):
        harness.run()

    assert harness.source_control.clone_calls == []
    assert harness.orchestrator.job_state is JobState.FAILED


def test_orchestrator_runs_only_once(tmp_path: Path) -> None:
    """Reject a second run of the same job."""

    harness = _Harness(tmp_path)
    harness.run()

    with pytest.raises(RuntimeError):
        harness.run()


def test_orchestrator_rejects_missing_dependencies(tmp_path: Path) -> None:
    """Reject construction without a log sink."""

    harness = _Harness(tmp_path)

    with pytest.raises(ValueError):
        BuildJobOrchestrator(
            payload=harness.payload,
            path_layout=harness.layout,
            source_control=harness.source_control,
            build_executor=harness.executor,
            artifact_uploader=harness.uploader,
            log_sink=None,
        )


def _patch_rmtree(monkeypatch: pytest.MonkeyPatch, failing_names: set[str]) -> list[int]:
    """Make directory removal fail for the given directory names.

    Args:
        monkeypatch: Pytest attribute patcher.
        failing_names: Directory names whose removal raises OSError.

    Returns:
        list[int]: Thread identifiers of every removal call.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    original_rmtree = shutil.rmtree
    removal_threads: list[int] = []

    def _rmtree(path, *args, **kwargs) -> None:
        removal_threads.append(threading.get_ident())
        if Path(path).name in failing_names:
            raise OSError(f"Directory not empty: {path}")
        original_rmtree(path, *args, **kwargs)

    monkeypatch.setattr(shutil, "rmtree", _rmtree)
    return removal_threads


def test_orchestrator_cleanup_failure_keeps_completed_outcome(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Log a removal failure as a warning and still complete the build.

    Args:
        tmp_path: Temporary builder root.
        monkeypatch: Pytest attribute patcher.

    Returns:
        None: Assertions validate outcome and warning.

    Raises:
        AssertionError: Raised when cleanup failures change the outcome.
    """

    removal_threads = _patch_rmtree(monkeypatch, failing_names={"DerivedData"})
    harness = _Harness(tmp_path)

    result = harness.run()

    assert result.state is JobState.COMPLETED
    warnings = harness.log_contents(LogCategory.CLEANUP, LogLevel.WARNING)
    assert len(warnings) == 1
    assert "Could not remove intermediates" in warnings[0]
    assert not harness.layout.path_source_checkout(harness.payload).exists()
    assert len(removal_threads) == 2
    assert threading.get_ident() not in removal_threads
    assert harness.progress_events[-1].is_finished


def test_orchestrator_cleanup_failure_keeps_stage_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Re-raise the stage error when removing the checkout also fails."""

    _patch_rmtree(monkeypatch, failing_names={"Source"})
    harness = _Harness(tmp_path, executor=_BuildExecutorStub(failing_fragment="-resolvePackageDependencies"))

    with pytest.raises(CommandFailedError):
        harness.run()

    assert harness.orchestrator.job_state is JobState.FAILED
    warnings = harness.log_contents(LogCategory.CLEANUP, LogLevel.WARNING)
    assert len(warnings) == 1
    assert "Could not remove source checkout" in warnings[0]


def test_orchestrator_failing_log_sink_keeps_stage_error_and_cleans_up(tmp_path: Path) -> None:
    """Keep the stage error, cleanup and terminal state when the log sink raises.

    Args:
        tmp_path: Temporary builder root.

    Returns:
        None: Assertions validate failure handling.

    Raises:
        AssertionError: Raised when a sink failure hides the stage error.
    """

    log_buffer = BuildLogBuffer()
    log_sink = _RejectingLogSink(log_buffer, rejected_level=LogLevel.ERROR)
    harness = _Harness(
        tmp_path,
        executor=_BuildExecutorStub(failing_fragment="-resolvePackageDependencies"),
        log_sink=log_sink,
    )

    with pytest.raises(CommandFailedError):
        harness.run()

    assert log_sink.rejected_count == 2
    assert harness.orchestrator.job_state is JobState.FAILED
    assert not harness.layout.path_source_checkout(harness.payload).exists()
    cleanup_contents = [entry.content for entry in log_buffer.buffer_snapshot(category=LogCategory.CLEANUP)]
    assert sum(1 for content in cleanup_contents if "CLEANUP STAGE: Starting" in content) == 1
    assert sum(1 for content in cleanup_contents if "CLEANUP STAGE: Completed" in content) == 1


def test_orchestrator_cancel_during_cleanup_finishes_cleanup(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Finish removing directories when cancellation arrives mid-cleanup, then end cancelled.

    Args:
        tmp_path: Temporary builder root.
        monkeypatch: Pytest attribute patcher.

    Returns:
        None: Assertions validate cleanup completion and terminal state.

    Raises:
        AssertionError: Raised when cancellation aborts cleanup.
    """

    original_rmtree = shutil.rmtree
    removal_started = threading.Event()
    removal_released = threading.Event()

    def _blocking_rmtree(path, *args, **kwargs) -> None:
        removal_started.set()
        removal_released.wait(timeout=10)
        original_rmtree(path, *args, **kwargs)

    monkeypatch.setattr(shutil, "rmtree", _blocking_rmtree)
    harness = _Harness(tmp_path)

    async def _scenario() -> None:
        run_task = asyncio.create_task(harness.orchestrator.job_run())
        await asyncio.to_thread(removal_started.wait, 10)
        harness.orchestrator.job_cancel()
        await asyncio.sleep(0)
        removal_released.set()
        with pytest.raises(asyncio.CancelledError):
            await run_task

    asyncio.run(_scenario())

    assert harness.orchestrator.job_state is JobState.CANCELLED
    assert not harness.layout.path_intermediates(harness.payload).exists()
    assert not harness.layout.path_source_checkout(harness.payload).exists()
    assert harness.count_logs("CLEANUP STAGE: Completed") == 1
    assert harness.count_logs("BUILD COMPLETED") == 0
