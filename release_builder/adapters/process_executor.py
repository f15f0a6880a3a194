"""Asynchronous external command executor with output error-pattern detection."""

from __future__ import annotations

import asyncio
import codecs
from contextlib import aclosing
from dataclasses import dataclass
import logging
import os
from pathlib import Path
import signal
from typing import AsyncIterator, Final

from .interfaces import CommandExecutorPort, ShellResult
from .shell_errors import CommandFailedError, PatternMatchError, ProcessLaunchError

logger = logging.getLogger(__name__)

_READ_CHUNK_BYTES: Final[int] = 64 * 1024
_TERMINATE_GRACE_SECONDS: Final[float] = 5.0
_STDOUT: Final[str] = "stdout"
_STDERR: Final[str] = "stderr"


@dataclass(frozen=True)
class ProcessExecutorConfig:
    """Immutable output inspection policy for one executor.

    Attributes:
        error_patterns: Case-insensitive substrings that indicate failure.
        fail_on_error_pattern: Whether a matched pattern raises instead of being recorded.
        combine_outputs: Whether stderr lines join the observable output stream.
    """

    error_patterns: tuple[str, ...] = ()
    fail_on_error_pattern: bool = False
    combine_outputs: bool = False

    def config_match_error_pattern(self, text: str) -> str | None:
        """Return the first configured pattern contained in text.

        Args:
            text: Output text to inspect.

        Returns:
            str | None: Matching configured pattern, or None.

        Raises:
            RuntimeError: This helper does not raise runtime errors.
        """

        folded_text = text.casefold()
        for pattern in self.error_patterns:
            if pattern.casefold() in folded_text:
                return pattern
        return None


PROCESS_CONFIG_PLAIN: Final[ProcessExecutorConfig] = ProcessExecutorConfig()

PROCESS_CONFIG_XCODEBUILD: Final[ProcessExecutorConfig] = ProcessExecutorConfig(
    error_patterns=(
        "Build FAILED",
        "** BUILD FAILED **",
        "error:",
        "fatal error:",
        "Command failed",
        "The following build commands failed:",
    ),
    fail_on_error_pattern=True,
    combine_outputs=True,
)

PROCESS_CONFIG_GIT: Final[ProcessExecutorConfig] = ProcessExecutorConfig(
    error_patterns=(
        "error:",
        "fatal:",
        "Permission denied",
        "No such file or directory",
        "not a git repository",
    ),
    fail_on_error_pattern=True,
)


class _ProcessCapture:
    """Mutable output capture for one command invocation."""

    def __init__(self, command: str):
        self.command = command
        self.stdout_lines: list[str] = []
        self.stderr_lines: list[str] = []
        self.observable_lines: list[str] = []
        self.exit_code: int | None = None
        self.matched_error_pattern: str | None = None

    @property
    def stdout(self) -> str:
        return "".join(self.stdout_lines)

    @property
    def stderr(self) -> str:
        return "".join(self.stderr_lines)

    @property
    def observable_output(self) -> str:
        return "".join(self.observable_lines)

    def capture_result(self, matched_error_pattern: str | None) -> ShellResult:
        return ShellResult(
            stdout=self.stdout,
            stderr=self.stderr,
            exit_code=self.exit_code if self.exit_code is not None else -1,
            matched_error_pattern=matched_error_pattern,
        )


class ProcessExecutor(CommandExecutorPort):
    """Run shell commands as child processes and classify their outcome.

    A child is started per call through the OS shell in its own process
    group, so termination reaches every process the shell spawned.
    """

    def __init__(
        self,
        config: ProcessExecutorConfig = PROCESS_CONFIG_PLAIN,
        shell_executable: str | None = None,
    ):
        """Initialize process executor.

        Args:
            config: Output inspection policy.
            shell_executable: Optional shell binary replacing the platform default.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when config is None.
        """

        if config is None:
            raise ValueError("config must not be None")
        self._config = config
        self._shell_executable = shell_executable

    @property
    def config(self) -> ProcessExecutorConfig:
        """Return output inspection policy."""

        return self._config

    async def executor_run_streaming(self, command: str, cwd: Path | None = None) -> AsyncIterator[str]:
        """Run one command and yield observable output lines as they arrive.

        Args:
            command: Shell command line.
            cwd: Optional working directory.

        Returns:
            AsyncIterator[str]: Output lines without trailing newline.

        Raises:
            ProcessLaunchError: Raised when the process cannot be started.
            CommandFailedError: Raised when the process exits non-zero.
            PatternMatchError: Raised when a configured error pattern is found and failing is enabled.
        """

        capture = _ProcessCapture(command=command)
        async with aclosing(self._executor_iterate(capture=capture, cwd=cwd)) as output_lines:
            async for output_line in output_lines:
                yield output_line.rstrip("\r\n")

        if capture.exit_code != 0:
            raise CommandFailedError(command=command, exit_code=int(capture.exit_code or -1), stderr=capture.stderr)

        matched_pattern = self._config.config_match_error_pattern(capture.observable_output)
        if self._config.fail_on_error_pattern and matched_pattern is not None:
            raise PatternMatchError(
                command=command,
                pattern=matched_pattern,
                output=capture.observable_output,
                result=capture.capture_result(matched_pattern),
            )

    async def executor_run_complete(self, command: str, cwd: Path | None = None) -> ShellResult:
        """Run one command to completion, checking output throughout.

        Args:
            command: Shell command line.
            cwd: Optional working directory.

        Returns:
            ShellResult: Captured output, exit status and first matched pattern.

        Raises:
            ProcessLaunchError: Raised when the process cannot be started.
            PatternMatchError: Raised when a configured error pattern is found and failing is enabled.
        """

        capture = _ProcessCapture(command=command)
        async with aclosing(self._executor_iterate(capture=capture, cwd=cwd)) as output_lines:
            async for _ in output_lines:
                pass

        matched_pattern = capture.matched_error_pattern or self._config.config_match_error_pattern(
            capture.observable_output
        )
        result = capture.capture_result(matched_pattern)
        if self._config.fail_on_error_pattern and matched_pattern is not None:
            raise PatternMatchError(
                command=command,
                pattern=matched_pattern,
                output=capture.observable_output,
                result=result,
            )
        return result

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

        result = await self.executor_run_complete(command=command, cwd=cwd)
        if not result.is_success:
            if result.matched_error_pattern is not None:
                raise PatternMatchError(
                    command=command,
                    pattern=result.matched_error_pattern,
                    output=result.combined_output,
                    result=result,
                )
            raise CommandFailedError(command=command, exit_code=result.exit_code, stderr=result.stderr)
        return result.stdout.strip()

    async def _executor_iterate(self, capture: _ProcessCapture, cwd: Path | None) -> AsyncIterator[str]:
        """Spawn the process and yield observable lines until both pipes close.

        Args:
            capture: Output capture updated as lines arrive.
            cwd: Optional working directory.

        Returns:
            AsyncIterator[str]: Observable output lines including line terminators.

        Raises:
            ProcessLaunchError: Raised when the process cannot be started.
            PatternMatchError: Raised on the first pattern match when failing is enabled.
        """

        logger.debug("running command: %s", capture.command)
        try:
            process = await asyncio.create_subprocess_shell(
                capture.command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd is not None else None,
                executable=self._shell_executable,
                start_new_session=True,
            )
        except OSError as error:
            raise ProcessLaunchError(f"Failed to launch process: {error}", command=capture.command) from error

        line_queue: asyncio.Queue[tuple[str, str | None]] = asyncio.Queue()
        readers = [
            asyncio.create_task(_executor_pump_lines(process.stdout, _STDOUT, line_queue)),
            asyncio.create_task(_executor_pump_lines(process.stderr, _STDERR, line_queue)),
        ]
        try:
            open_streams = len(readers)
            while open_streams > 0:
                stream_name, line = await line_queue.get()
                if line is None:
                    open_streams -= 1
                    continue

                if stream_name == _STDOUT:
                    capture.stdout_lines.append(line)
                else:
                    capture.stderr_lines.append(line)
                    if not self._config.combine_outputs:
                        continue

                capture.observable_lines.append(line)
                matched_pattern = self._config.config_match_error_pattern(line)
                if matched_pattern is not None and capture.matched_error_pattern is None:
                    capture.matched_error_pattern = matched_pattern
                    if self._config.fail_on_error_pattern:
                        await _executor_terminate(process)
                        capture.exit_code = process.returncode
                        raise PatternMatchError(
                            command=capture.command,
                            pattern=matched_pattern,
                            output=capture.observable_output,
                            result=capture.capture_result(matched_pattern),
                        )
                yield line

            capture.exit_code = await process.wait()
        finally:
            for reader in readers:
                reader.cancel()
            await asyncio.gather(*readers, return_exceptions=True)
            if process.returncode is None:
                logger.debug("terminating command: %s", capture.command)
                await _executor_terminate(process)


async def _executor_pump_lines(
    reader: asyncio.StreamReader | None,
    stream_name: str,
    line_queue: asyncio.Queue[tuple[str, str | None]],
) -> None:
    """Forward decoded lines from one pipe into the shared queue.

    Args:
        reader: Pipe reader, or None when the pipe was not captured.
        stream_name: Stream label placed next to each line.
        line_queue: Destination queue; a None line marks end of stream.

    Returns:
        None: Lines are forwarded as side effect.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    try:
        if reader is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending_text = ""
        while True:
            data = await reader.read(_READ_CHUNK_BYTES)
            if not data:
                break
            pending_text += decoder.decode(data)
            *complete_lines, pending_text = pending_text.split("\n")
            for complete_line in complete_lines:
                line_queue.put_nowait((stream_name, f"{complete_line}\n"))
        pending_text += decoder.decode(b"", final=True)
        if pending_text:
            line_queue.put_nowait((stream_name, pending_text))
    finally:
        line_queue.put_nowait((stream_name, None))


async def _executor_terminate(process: asyncio.subprocess.Process) -> None:
    """Terminate the process group of a running child and reap it.

    Args:
        process: Child process started in its own session.

    Returns:
        None: The child is reaped as side effect.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    if process.returncode is not None:
        return
    _executor_signal_group(process, signal.SIGTERM)
    try:
        await asyncio.wait_for(process.wait(), timeout=_TERMINATE_GRACE_SECONDS)
    except asyncio.TimeoutError:
        _executor_signal_group(process, signal.SIGKILL)
        await process.wait()


def _executor_signal_group(process: asyncio.subprocess.Process, signal_number: int) -> None:
    try:
        os.killpg(os.getpgid(process.pid), signal_number)
    except ProcessLookupError:
        pass
