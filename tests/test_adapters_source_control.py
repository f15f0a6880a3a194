"""Tests for the git source-control client with stubbed command execution."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from release_builder.adapters import (
    CommandFailedError,
    ShellResult,
    SourceControlClient,
    TagAlreadyExistsError,
    scm_parse_branch_heads,
    scm_parse_version_tags,
)
from release_builder.domain import GitBranch, Version

_TAG_LISTING = "\n".join(
    [
        "1111111111aaaa\trefs/tags/v1.0.0_1",
        "2222222222bbbb\trefs/tags/v1.0.0_1^{}",
        "3333333333cccc\trefs/tags/v1.2.0_7^{}",
        "4444444444dddd\trefs/tags/nightly^{}",
        "5555555555eeee\trefs/tags/v1.2_3^{}",
    ]
)


class _ExecutorStub:
    """Command executor stub recording commands and replaying outputs."""

    def __init__(self, outputs: dict[str, str] | None = None, failing_prefix: str | None = None):
        """Initialize executor stub.

        Args:
            outputs: Output returned for commands containing each key.
            failing_prefix: Commands starting with this prefix raise CommandFailedError.

        Returns:
            None: Initializer does not return values.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        self.outputs = outputs or {}
        self.failing_prefix = failing_prefix
        self.commands: list[tuple[str, Path | None]] = []

    async def executor_run_output(self, command: str, cwd: Path | None = None) -> str:
        """Record command and return configured output.

        Args:
            command: Shell command line.
            cwd: Optional working directory.

        Returns:
            str: Configured output for the first matching key.

        Raises:
            CommandFailedError: Raised when the command matches the failing prefix.
        """

        self.commands.append((command, cwd))
        if self.failing_prefix is not None and command.startswith(self.failing_prefix):
            raise CommandFailedError(command=command, exit_code=128, stderr="fatal: denied")
        for key, output in self.outputs.items():
            if key in command:
                return output
        return ""

    async def executor_run_complete(self, command: str, cwd: Path | None = None) -> ShellResult:
        """Return a successful result for the recorded command.

        Args:
            command: Shell command line.
            cwd: Optional working directory.

        Returns:
            ShellResult: Successful empty result.

        Raises:
            RuntimeError: This stub does not raise runtime errors.
        """

        self.commands.append((command, cwd))
        return ShellResult(stdout="", stderr="", exit_code=0)


def test_scm_parse_version_tags_keeps_only_peeled_release_tags() -> None:
    """Parse only peeled `v<X.Y.Z>_<N>` tag lines.

    Returns:
        None: Assertions validate parsed versions.

    Raises:
        AssertionError: Raised when non-release tags are parsed.
    """

    versions = scm_parse_version_tags(_TAG_LISTING)

    assert versions == [Version("1.0.0", 1), Version("1.2.0", 7)]
    assert [version.commit_hash for version in versions] == ["2222222222bbbb", "3333333333cccc"]


def test_scm_parse_branch_heads_sorts_by_name() -> None:
    """Strip the heads prefix and sort branches by name."""

    listing = "bbb\trefs/heads/release\naaa\trefs/heads/main\n\nbroken-line\nccc\trefs/heads/feature/x"

    assert scm_parse_branch_heads(listing) == [
        GitBranch(name="feature/x", commit_hash="ccc"),
        GitBranch(name="main", commit_hash="aaa"),
        GitBranch(name="release", commit_hash="bbb"),
    ]


def test_scm_fetch_versions_uses_listing_executor() -> None:
    """Run tag listing through the listing executor only.

    Returns:
        None: Assertions validate routing and parsing.

    Raises:
        AssertionError: Raised when listing uses the wrong executor.
    """

    command_executor = _ExecutorStub()
    listing_executor = _ExecutorStub(outputs={"ls-remote --tags": _TAG_LISTING})
    client = SourceControlClient(command_executor=command_executor, listing_executor=listing_executor)

    versions = asyncio.run(client.scm_fetch_versions(remote_url="git@example.com:app.git"))

    assert len(versions) == 2
    assert listing_executor.commands == [("git ls-remote --tags git@example.com:app.git", None)]
    assert command_executor.commands == []


def test_scm_clone_renders_shallow_branch_clone(tmp_path: Path) -> None:
    """Render a shallow clone of one ref into the checkout directory."""

    command_executor = _ExecutorStub()
    client = SourceControlClient(command_executor=command_executor, listing_executor=_ExecutorStub())
    checkout_dir = tmp_path / "Source"

    asyncio.run(client.scm_clone(remote_url="https://example.com/app.git", checkout_dir=checkout_dir, ref="v1.0.0_1"))

    assert command_executor.commands == [
        (f"git clone https://example.com/app.git {checkout_dir} --branch v1.0.0_1 --depth 1", None)
    ]


def test_scm_clone_tag_and_push_tags_then_pushes(tmp_path: Path) -> None:
    """Clone the branch, create the annotated tag and push it.

    Args:
        tmp_path: Temporary checkout parent.

    Returns:
        None: Assertions validate command sequence.

    Raises:
        AssertionError: Raised when command order differs.
    """

    command_executor = _ExecutorStub()
    listing_executor = _ExecutorStub(outputs={"ls-remote --tags": _TAG_LISTING})
    client = SourceControlClient(command_executor=command_executor, listing_executor=listing_executor)
    checkout_dir = tmp_path / "Source"
    version = Version("2.0.0", 1, "abcdef99")

    asyncio.run(
        client.scm_clone_tag_and_push(
            version=version,
            branch="main",
            remote_url="git@example.com:app.git",
            checkout_dir=checkout_dir,
        )
    )

    assert [command for command, _ in command_executor.commands] == [
        f"git clone git@example.com:app.git {checkout_dir} --branch main --depth 1",
        "git tag -a v2.0.0_1 -m v2.0.0_1_abcdef",
        "git push origin v2.0.0_1",
    ]
    assert [cwd for _, cwd in command_executor.commands[1:]] == [checkout_dir, checkout_dir]


def test_scm_clone_tag_and_push_rejects_existing_tag_before_cloning(tmp_path: Path) -> None:
    """Abort before cloning when the remote already has the release tag."""

    command_executor = _ExecutorStub()
    listing_executor = _ExecutorStub(outputs={"ls-remote --tags": _TAG_LISTING})
    client = SourceControlClient(command_executor=command_executor, listing_executor=listing_executor)

    with pytest.raises(TagAlreadyExistsError) as error_info:
        asyncio.run(
            client.scm_clone_tag_and_push(
                version=Version("1.2.0", 7),
                branch="main",
                remote_url="git@example.com:app.git",
                checkout_dir=tmp_path / "Source",
            )
        )

    assert error_info.value.tag_name == "v1.2.0_7"
    assert command_executor.commands == []


def test_scm_clone_propagates_command_failure(tmp_path: Path) -> None:
    """Propagate clone failures from the command executor."""

    client = SourceControlClient(
        command_executor=_ExecutorStub(failing_prefix="git clone"),
        listing_executor=_ExecutorStub(),
    )

    with pytest.raises(CommandFailedError):
        asyncio.run(client.scm_clone(remote_url="bad", checkout_dir=tmp_path, ref="main"))


def test_source_control_client_rejects_blank_git_executable() -> None:
    """Reject a blank git executable."""

    with pytest.raises(ValueError):
        SourceControlClient(git_executable=" ")
