"""Job-layer manager running build jobs as background tasks with persisted status."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, replace
from functools import partial
import logging
from uuid import UUID

from release_builder.db import BuildLogRepositoryPort, BuildRunRecord, BuildRunRepositoryPort
from release_builder.domain import (
    BuildJobAlreadyRunningError,
    BuildJobNotFoundError,
    BuildPayload,
    JobState,
    LogEntry,
    ProgressEvent,
)

from .error_codes import job_map_error_code
from .interfaces import BuildJobPort, LogSink

logger = logging.getLogger(__name__)

BuildJobFactory = Callable[[BuildPayload, LogSink], BuildJobPort]


@dataclass(frozen=True)
class BuildJobStatus:
    """Status snapshot for one managed build.

    Attributes:
        build_id: Build identity.
        state: Current job state.
        progress: Last reported completion fraction.
        message: Last reported progress message.
        error_code: Optional deterministic error code for failed builds.
        error_message: Optional failure message.
    """

    build_id: UUID
    state: JobState
    progress: float
    message: str
    error_code: str | None = None
    error_message: str | None = None

    @classmethod
    def from_record(cls, record: BuildRunRecord) -> BuildJobStatus:
        """Build status snapshot from one persisted run."""

        return cls(
            build_id=record.build_id,
            state=record.state.state,
            progress=record.state.progress,
            message=record.state.message,
            error_code=record.state.error_code,
            error_message=record.state.error_message,
        )


@dataclass
class _ManagedBuildJob:
    job: BuildJobPort
    task: asyncio.Task[None]


class _BuildRecordWriter:
    """Ordered background writer moving one build's persistence off the event loop.

    Job callbacks only enqueue; a drain task runs each write in a worker
    thread. Failed writes are logged and skipped so persistence problems never
    interrupt the build itself.
    """

    def __init__(
        self,
        build_id: UUID,
        build_run_repository: BuildRunRepositoryPort,
        build_log_repository: BuildLogRepositoryPort,
    ):
        self._build_id = build_id
        self._build_run_repository = build_run_repository
        self._build_log_repository = build_log_repository
        self._queue: asyncio.Queue[Callable[[], object] | None] = asyncio.Queue()
        self._drain_task: asyncio.Task[None] | None = None

    def writer_start(self) -> None:
        """Start draining queued writes on the running event loop."""

        self._drain_task = asyncio.get_running_loop().create_task(
            self._writer_drain(),
            name=f"build-{self._build_id}-writer",
        )

    def writer_append_log(self, entry: LogEntry) -> None:
        """Queue one log entry for persistence."""

        self._queue.put_nowait(partial(self._build_log_repository.db_build_log_append, entry))

    def writer_record_progress(self, state: JobState, event: ProgressEvent) -> None:
        """Queue one progress update for persistence."""

        self._queue.put_nowait(
            partial(
                self._build_run_repository.db_build_run_update_progress,
                build_id=self._build_id,
                state=state,
                progress=event.progress,
                message=event.message,
            )
        )

    async def writer_close(self) -> None:
        """Flush every queued write and stop the drain task."""

        self._queue.put_nowait(None)
        if self._drain_task is not None:
            await self._drain_task

    async def _writer_drain(self) -> None:
        while True:
            operation = await self._queue.get()
            if operation is None:
                return
            try:
                await asyncio.to_thread(operation)
            except Exception:  # pylint: disable=broad-exception-caught
                logger.exception("failed to persist record for build %s", self._build_id)


class BuildJobManager:
    """Registry of build jobs running in the current event loop.

    Every job state change and log entry is written through the build run and
    build log repositories, so status survives after the job object is gone.
    Finished jobs are dropped from the registry as soon as their task ends.
    """

    def __init__(
        self,
        job_factory: BuildJobFactory,
        build_run_repository: BuildRunRepositoryPort,
        build_log_repository: BuildLogRepositoryPort,
    ):
        """Initialize build job manager dependencies.

        Args:
            job_factory: Callable creating one job for a payload and log sink.
            build_run_repository: DB-layer build run persistence service.
            build_log_repository: DB-layer build log persistence service.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when dependencies are None.
        """

        if job_factory is None:
            raise ValueError("job_factory must not be None")
        if build_run_repository is None:
            raise ValueError("build_run_repository must not be None")
        if build_log_repository is None:
            raise ValueError("build_log_repository must not be None")

        self._job_factory = job_factory
        self._build_run_repository = build_run_repository
        self._build_log_repository = build_log_repository
        self._jobs: dict[UUID, _ManagedBuildJob] = {}

    def manager_submit(self, payload: BuildPayload) -> BuildJobStatus:
        """Persist a new run and start its job as a background task.

        Must be called from a running event loop.

        Args:
            payload: Build request.

        Returns:
            BuildJobStatus: Initial `idle` status.

        Raises:
            BuildJobAlreadyRunningError: Raised when the build id is still running.
            ValueError: Raised when the build id was already used.
            RuntimeError: Raised when persistence fails.
        """

        existing = self._jobs.get(payload.build_id)
        if existing is not None and not existing.task.done():
            raise BuildJobAlreadyRunningError(f"build {payload.build_id} is already running")

        record = self._build_run_repository.db_build_run_create_started(payload)
        writer = _BuildRecordWriter(payload.build_id, self._build_run_repository, self._build_log_repository)
        job = self._job_factory(payload, writer.writer_append_log)
        task = asyncio.get_running_loop().create_task(
            self._manager_drive(payload.build_id, job, writer),
            name=f"build-{payload.build_id}",
        )
        managed = _ManagedBuildJob(job=job, task=task)
        self._jobs[payload.build_id] = managed
        task.add_done_callback(lambda _task: self._manager_forget(payload.build_id, managed))
        logger.info("submitted build %s (%s)", payload.build_id, payload.version.display_string)
        return BuildJobStatus.from_record(record)

    def manager_cancel(self, build_id: UUID) -> BuildJobStatus:
        """Request cancellation of one build.

        Cancelling a finished build leaves it unchanged.

        Args:
            build_id: Build identity.

        Returns:
            BuildJobStatus: Status at the time of the request.

        Raises:
            BuildJobNotFoundError: Raised when the build is unknown.
        """

        managed = self._jobs.get(build_id)
        if managed is not None:
            managed.job.job_cancel()
            logger.info("cancellation requested for build %s", build_id)
        return self.manager_status(build_id)

    def manager_status(self, build_id: UUID) -> BuildJobStatus:
        """Return status of one build.

        Progress and errors come from the persisted run. While the job is
        still running in this manager its live state is reported, since
        persisted updates are written in the background.

        Args:
            build_id: Build identity.

        Returns:
            BuildJobStatus: Current status snapshot.

        Raises:
            BuildJobNotFoundError: Raised when the build is unknown.
        """

        record = self._build_run_repository.db_build_run_get_by_id(build_id)
        if record is None:
            raise BuildJobNotFoundError(f"build {build_id} not found")
        status = BuildJobStatus.from_record(record)
        managed = self._jobs.get(build_id)
        if managed is not None and not managed.task.done():
            return replace(status, state=managed.job.job_state)
        return status

    def manager_logs(self, build_id: UUID, limit: int | None = None, offset: int = 0) -> list[LogEntry]:
        """Return persisted log entries of one build in append order.

        Args:
            build_id: Build identity.
            limit: Optional maximum number of entries.
            offset: Number of entries to skip.

        Returns:
            list[LogEntry]: Ordered log entries.

        Raises:
            BuildJobNotFoundError: Raised when the build is unknown.
        """

        if self._build_run_repository.db_build_run_get_by_id(build_id) is None:
            raise BuildJobNotFoundError(f"build {build_id} not found")
        return self._build_log_repository.db_build_log_list_for_build(build_id, limit=limit, offset=offset)

    async def manager_wait(self, build_id: UUID) -> BuildJobStatus:
        """Wait until one build reaches a terminal state.

        Args:
            build_id: Build identity.

        Returns:
            BuildJobStatus: Terminal status snapshot.

        Raises:
            BuildJobNotFoundError: Raised when the build is unknown.
        """

        managed = self._jobs.get(build_id)
        if managed is not None:
            await asyncio.gather(managed.task, return_exceptions=True)
        return self.manager_status(build_id)

    async def manager_shutdown(self) -> None:
        """Cancel every running build and wait for cleanup to finish."""

        running = [managed for managed in self._jobs.values() if not managed.task.done()]
        for managed in running:
            managed.job.job_cancel()
        if running:
            await asyncio.gather(*(managed.task for managed in running), return_exceptions=True)

    def _manager_forget(self, build_id: UUID, managed: _ManagedBuildJob) -> None:
        if self._jobs.get(build_id) is managed:
            del self._jobs[build_id]

    async def _manager_drive(self, build_id: UUID, job: BuildJobPort, writer: _BuildRecordWriter) -> None:
        writer.writer_start()
        try:
            await job.job_run(progress_sink=lambda event: writer.writer_record_progress(job.job_state, event))
        except asyncio.CancelledError:
            await self._manager_finalize(writer, build_id, JobState.CANCELLED, None, None)
            logger.info("build %s cancelled", build_id)
            raise
        except Exception as error:
            error_code = job_map_error_code(error)
            await self._manager_finalize(writer, build_id, JobState.FAILED, error_code.value, str(error))
            logger.warning("build %s failed with %s: %s", build_id, error_code.value, error)
            return

        await self._manager_finalize(writer, build_id, JobState.COMPLETED, None, None)
        logger.info("build %s completed", build_id)

    async def _manager_finalize(
        self,
        writer: _BuildRecordWriter,
        build_id: UUID,
        state: JobState,
        error_code: str | None,
        error_message: str | None,
    ) -> None:
        """Flush queued writes, then persist the terminal state off the event loop."""

        await writer.writer_close()
        await asyncio.to_thread(
            self._build_run_repository.db_build_run_finalize,
            build_id,
            state,
            error_code,
            error_message,
        )
