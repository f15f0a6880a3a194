"""Git CLI adapter for release cloning, tagging and remote ref discovery."""

from __future__ import annotations

import logging
from pathlib import Path
import re
import shlex
from typing import Final

from release_builder.domain import GitBranch, Version

from .interfaces import CommandExecutorPort, SourceControlPort
from .process_executor import PROCESS_CONFIG_GIT, PROCESS_CONFIG_PLAIN, ProcessExecutor
from .shell_errors import TagAlreadyExistsError

logger = logging.getLogger(__name__)

_RELEASE_TAG_LINE_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^(?P<commit_hash>[0-9A-Za-z]+)\s+refs/tags/v(?P<version>\d+\.\d+\.\d+)_(?P<build_number>\d+)\^\{\}$"
)
_HEADS_PREFIX: Final[str] = "refs/heads/"


class SourceControlClient(SourceControlPort):
    """Source-control client backed by the `git` command line.

    Clone and tag commands run with the git error-pattern policy, remote
    listings run with the plain policy because their stdout is parsed.
    """

    def __init__(
        self,
        command_executor: CommandExecutorPort | None = None,
        listing_executor: CommandExecutorPort | None = None,
        git_executable: str = "git",
    ):
        """Initialize source-control client.

        Args:
            command_executor: Executor used for clone/tag/push commands.
            listing_executor: Executor used for `ls-remote` listings.
            git_executable: Git binary name or path.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when git executable is blank.
        """

        if not git_executable.strip():
            raise ValueError("git_executable must not be blank")
        self._command_executor = command_executor or ProcessExecutor(config=PROCESS_CONFIG_GIT)
        self._listing_executor = listing_executor or ProcessExecutor(config=PROCESS_CONFIG_PLAIN)
        self._git = shlex.quote(git_executable.strip())

    async def scm_clone(self, remote_url: str, checkout_dir: Path, ref: str, shallow: bool = True) -> None:
        """Clone one tag or branch into a checkout directory.

        Args:
            remote_url: Remote repository URL.
            checkout_dir: Destination directory.
            ref: Tag or branch name.
            shallow: Whether to clone only the latest commit.

        Returns:
            None: The checkout is created as side effect.

        Raises:
            ProcessError: Raised when the clone command fails.
        """

        command = self._scm_clone_command(remote_url=remote_url, checkout_dir=checkout_dir, ref=ref, shallow=shallow)
        logger.info("git clone command: %s", command)
        await self._command_executor.executor_run_output(command)

    async def scm_clone_tag_and_push(
        self,
        version: Version,
        branch: str,
        remote_url: str,
        checkout_dir: Path,
    ) -> None:
        """Clone a branch head, create the release tag and push it.

        The remote is checked first; an existing tag aborts before anything
        is cloned or pushed.

        Args:
            version: Release version whose tag is created.
            branch: Branch to clone.
            remote_url: Remote repository URL.
            checkout_dir: Destination directory.

        Returns:
            None: The tag is pushed as side effect.

        Raises:
            TagAlreadyExistsError: Raised when the remote already has the tag.
            ProcessError: Raised when any git command fails.
        """

        existing_versions = await self.scm_fetch_versions(remote_url=remote_url)
        if any(existing.tag_name == version.tag_name for existing in existing_versions):
            logger.warning("tag %s already exists, skipping creation", version.tag_name)
            raise TagAlreadyExistsError(version.tag_name)

        await self.scm_clone(remote_url=remote_url, checkout_dir=checkout_dir, ref=branch, shallow=True)

        tag_command = (
            f"{self._git} tag -a {shlex.quote(version.tag_name)} -m {shlex.quote(version.display_string)}"
        )
        push_command = f"{self._git} push origin {shlex.quote(version.tag_name)}"
        logger.info("git tag command: %s", tag_command)
        await self._command_executor.executor_run_output(tag_command, cwd=checkout_dir)
        await self._command_executor.executor_run_output(push_command, cwd=checkout_dir)

    async def scm_fetch_versions(self, remote_url: str) -> list[Version]:
        """Return release versions parsed from remote annotated tags.

        Args:
            remote_url: Remote repository URL.

        Returns:
            list[Version]: Versions in listing order.

        Raises:
            ProcessError: Raised when the listing command fails.
        """

        command = f"{self._git} ls-remote --tags {shlex.quote(remote_url)}"
        listing = await self._listing_executor.executor_run_output(command)
        return scm_parse_version_tags(listing)

    async def scm_fetch_branches(self, remote_url: str) -> list[GitBranch]:
        """Return remote branch heads sorted by name.

        Args:
            remote_url: Remote repository URL.

        Returns:
            list[GitBranch]: Branches sorted ascending by name.

        Raises:
            ProcessError: Raised when the listing command fails.
        """

        command = f"{self._git} ls-remote --heads {shlex.quote(remote_url)}"
        listing = await self._listing_executor.executor_run_output(command)
        return scm_parse_branch_heads(listing)

    def _scm_clone_command(self, remote_url: str, checkout_dir: Path, ref: str, shallow: bool) -> str:
        command_parts = [
            self._git,
            "clone",
            shlex.quote(remote_url),
            shlex.quote(str(checkout_dir)),
            "--branch",
            shlex.quote(ref),
        ]
        if shallow:
            command_parts.extend(["--depth", "1"])
        return " ".join(command_parts)


def scm_parse_version_tags(listing: str) -> list[Version]:
    """Parse `git ls-remote --tags` output into release versions.

    Only peeled annotated tag lines of the form
    `<hash>\\trefs/tags/v<X.Y.Z>_<N>^{}` produce a version.

    Args:
        listing: Raw listing output.

    Returns:
        list[Version]: Parsed versions in listing order.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    versions: list[Version] = []
    for line in listing.splitlines():
        match = _RELEASE_TAG_LINE_PATTERN.match(line.strip())
        if match is None:
            continue
        versions.append(
            Version(
                version=match.group("version"),
                build_number=int(match.group("build_number")),
                commit_hash=match.group("commit_hash"),
            )
        )
    return versions


def scm_parse_branch_heads(listing: str) -> list[GitBranch]:
    """Parse `git ls-remote --heads` output into branches sorted by name.

    Args:
        listing: Raw listing output.

    Returns:
        list[GitBranch]: Branches sorted ascending by name.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    branches: list[GitBranch] = []
    for line in listing.splitlines():
        parts = line.strip().split("\t")
        if len(parts) < 2 or not parts[0] or not parts[1]:
            continue
        ref_name = parts[1].strip()
        branch_name = ref_name[len(_HEADS_PREFIX):] if ref_name.startswith(_HEADS_PREFIX) else ref_name
        branches.append(GitBranch(name=branch_name, commit_hash=parts[0].strip()))
    return sorted(branches, key=lambda branch: branch.name)
