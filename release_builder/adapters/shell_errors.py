"""Project-native typed exceptions for external command and upload failures."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .interfaces import ShellResult


class ProcessError(Exception):
    """Base exception for failures while running one external command.

    Attributes:
        command: Command line that failed.
    """

    def __init__(self, message: str, command: str):
        super().__init__(message)
        self.command = command


class ProcessLaunchError(ProcessError, OSError):
    """The OS could not start the command process."""


class CommandFailedError(ProcessError, RuntimeError):
    """The command exited with a non-zero status.

    Attributes:
        exit_code: Process exit status.
        stderr: Captured standard error text.
    """

    def __init__(self, command: str, exit_code: int, stderr: str):
        super().__init__(
            message=f"Command '{command}' failed with exit code {exit_code}: {stderr.strip()}",
            command=command,
        )
        self.exit_code = exit_code
        self.stderr = stderr


class PatternMatchError(ProcessError, RuntimeError):
    """The command reported failure through its output text.

    Attributes:
        pattern: Configured error pattern that matched.
        output: Output accumulated up to the match.
        result: Captured result at the time of the match, when available.
    """

    def __init__(self, command: str, pattern: str, output: str, result: ShellResult | None = None):
        super().__init__(
            message=f"Command '{command}' failed - found error pattern '{pattern}' in output",
            command=command,
        )
        self.pattern = pattern
        self.output = output
        self.result = result


class TagAlreadyExistsError(RuntimeError):
    """Release tag already exists on the remote.

    Attributes:
        tag_name: Conflicting tag name.
    """

    def __init__(self, tag_name: str):
        super().__init__(f"Tag {tag_name} already exists.")
        self.tag_name = tag_name


class UploadError(ConnectionError):
    """Artifact upload failed.

    Attributes:
        status_code: Optional HTTP status returned by the upload destination.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
