"""Typed interfaces for job-layer orchestration responsibilities."""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, Callable, Protocol
from uuid import UUID

from release_builder.domain import JobState, LogEntry, ProgressEvent

ProgressSink = Callable[[ProgressEvent], None]
LogSink = Callable[[LogEntry], None]


@dataclass(frozen=True)
class JobExecutionResult:
    """Result contract for one finished build job.

    Attributes:
        build_id: Build identity.
        state: Final job state.
    """

    build_id: UUID
    state: JobState


class BuildJobPort(Protocol):
    """Port definition for running one build job."""

    @property
    def job_state(self) -> JobState:
        """Return current job state."""

    async def job_run(self, progress_sink: ProgressSink | None = None) -> JobExecutionResult:
        """Run every pipeline stage and return the completed result.

        Args:
            progress_sink: Optional callback receiving progress events.

        Returns:
            JobExecutionResult: Completed execution result.

        Raises:
            Exception: Stage failure, re-raised unchanged after cleanup.
            asyncio.CancelledError: Raised when the job was cancelled.
        """

    def job_stream_progress(self) -> AsyncIterator[ProgressEvent]:
        """Run the job and yield its progress events.

        Returns:
            AsyncIterator[ProgressEvent]: Progress events ending with the finished event.

        Raises:
            Exception: Stage failure, re-raised unchanged after cleanup.
            BuildJobCancelledError: Raised when the job was cancelled.
        """

    def job_cancel(self) -> None:
        """Request cancellation of the running job."""
