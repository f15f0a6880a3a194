"""Typed interfaces for adapter-layer responsibilities."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Protocol

from release_builder.domain import GitBranch, ProjectDescriptor, Version


@dataclass(frozen=True)
class ShellResult:
    """Captured outcome of one completed command.

    Attributes:
        stdout: Captured standard output.
        stderr: Captured standard error.
        exit_code: Process exit status.
        matched_error_pattern: First configured error pattern found in output.
    """

    stdout: str
    stderr: str
    exit_code: int
    matched_error_pattern: str | None = None

    @property
    def is_success(self) -> bool:
        """Return whether the command exited cleanly without error output."""

        return self.exit_code == 0 and self.matched_error_pattern is None

    @property
    def combined_output(self) -> str:
        """Return stdout and stderr joined by a newline when both are present."""

        if not self.stderr:
            return self.stdout
        if not self.stdout:
            return self.stderr
        return f"{self.stdout}\n{self.stderr}"


class CommandExecutorPort(Protocol):
    """Port definition for running external OS commands."""

    def executor_run_streaming(self, command: str, cwd: Path | None = None) -> AsyncIterator[str]:
        """Run one command and yield its observable output lines.

        Args:
            command: Shell command line.
            cwd: Optional working directory.

        Returns:
            AsyncIterator[str]: Output lines as they are produced.

        Raises:
            ProcessLaunchError: Raised when the process cannot be started.
            CommandFailedError: Raised when the process exits non-zero.
            PatternMatchError: Raised when a configured error pattern is found.
        """

    async def executor_run_complete(self, command: str, cwd: Path | None = None) -> ShellResult:
        """Run one command to completion and return its captured result.

        Args:
            command: Shell command line.
            cwd: Optional working directory.

        Returns:
            ShellResult: Captured output and exit status.

        Raises:
            ProcessLaunchError: Raised when the process cannot be started.
            PatternMatchError: Raised when a configured error pattern is found and failing is enabled.
        """

    async def executor_run_output(self, command: str, cwd: Path | None = None) -> str:
        """Run one command and return stripped standard output.

        Args:
            command: Shell command line.
            cwd: Optional working directory.

        Returns:
            str: Stripped standard output.

        Raises:
            ProcessLaunchError: Raised when the process cannot be started.
            CommandFailedError: Raised when the process exits non-zero.
            PatternMatchError: Raised when a configured error pattern is found.
        """


class SourceControlPort(Protocol):
    """Port definition for remote source-control operations."""

    async def scm_clone(self, remote_url: str, checkout_dir: Path, ref: str, shallow: bool = True) -> None:
        """Clone one tag or branch into a checkout directory."""

    async def scm_clone_tag_and_push(
        self,
        version: Version,
        branch: str,
        remote_url: str,
        checkout_dir: Path,
    ) -> None:
        """Clone a branch head, tag it with the version and push the tag."""

    async def scm_fetch_versions(self, remote_url: str) -> list[Version]:
        """Return versions parsed from remote release tags."""

    async def scm_fetch_branches(self, remote_url: str) -> list[GitBranch]:
        """Return remote branches sorted by name."""


class ArtifactUploaderPort(Protocol):
    """Port definition for publishing one exported artifact."""

    async def uploader_upload(self, project: ProjectDescriptor, version: Version, artifact_path: Path) -> str:
        """Upload one artifact and return the destination identifier.

        Args:
            project: Project the artifact belongs to.
            version: Version the artifact was built from.
            artifact_path: Exported artifact file or export directory.

        Returns:
            str: Identifier assigned by the upload destination.

        Raises:
            UploadError: Raised when the upload fails.
        """
