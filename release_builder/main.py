"""Main module entrypoint for local runtime execution.

This module validates startup configuration and either launches the FastAPI
service or runs one pipeline command in the foreground.
"""

import argparse
import asyncio
import logging
from contextlib import aclosing

import uvicorn

from release_builder.bootstrap import (
    bootstrap_create_application,
    bootstrap_create_job_factory,
    bootstrap_create_source_control,
)
from release_builder.config import AppSettings, config_load_settings
from release_builder.domain import (
    BuildJobCancelledError,
    BuildPayload,
    ExportKind,
    LogLevel,
    Platform,
    ProjectDescriptor,
    SchemeDescriptor,
    SourceSelection,
    Version,
)
from release_builder.jobs import BuildLogBuffer


def main_build_argument_parser() -> argparse.ArgumentParser:
    """Build the command line parser for every runtime command.

    Returns:
        argparse.ArgumentParser: Configured parser.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    argument_parser = argparse.ArgumentParser(description="Release builder runtime entrypoint")
    argument_parser.add_argument(
        "command",
        nargs="?",
        default="api",
        choices=("api", "build", "versions", "branches"),
        help="Runtime command: `api` starts server, `build` runs one build in the foreground, "
        "`versions`/`branches` list remote release tags or branches",
        type=str,
    )
    argument_parser.add_argument("--log-level", dest="log_level", type=str, help="Override LOG_LEVEL setting")
    argument_parser.add_argument("--remote-url", dest="remote_url", type=str, help="Remote repository URL")
    argument_parser.add_argument("--project-name", dest="project_name", type=str, help="Project name for `build`")
    argument_parser.add_argument(
        "--xcodeproj",
        dest="xcodeproj_name",
        type=str,
        help="Project bundle name without `.xcodeproj`, defaults to the project name",
    )
    argument_parser.add_argument("--bundle-identifier", dest="bundle_identifier", type=str, default="")
    argument_parser.add_argument("--scheme", dest="scheme_name", type=str, help="Scheme name for `build`")
    argument_parser.add_argument(
        "--platform",
        dest="platforms",
        action="append",
        choices=[platform.value for platform in Platform],
        help="Target platform, repeat for several; order sets archive stagger order",
    )
    argument_parser.add_argument("--version", dest="version", type=str, help="Marketing version in X.Y.Z form")
    argument_parser.add_argument("--build-number", dest="build_number", type=int, help="Build number")
    argument_parser.add_argument("--commit-hash", dest="commit_hash", type=str, default="")
    argument_parser.add_argument(
        "--branch",
        dest="branch_name",
        type=str,
        help="Tag and push this branch head before building instead of cloning an existing tag",
    )
    argument_parser.add_argument(
        "--export",
        dest="export_kinds",
        action="append",
        choices=[kind.value for kind in ExportKind],
        help="Export kind, repeat for several",
    )
    return argument_parser


def main() -> None:
    """Run selected runtime command with validated startup configuration.

    Returns:
        None: This function does not return a runtime value.

    Raises:
        SettingsLoadError: Raised when configuration validation fails.
        SystemExit: Raised with status 1 when a foreground command fails.
    """

    argument_parser = main_build_argument_parser()
    parsed_arguments = argument_parser.parse_args()

    settings = config_load_settings()
    logging.basicConfig(
        level=(parsed_arguments.log_level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    if parsed_arguments.command == "versions":
        _main_require(argument_parser, parsed_arguments, ("remote_url",))
        versions = asyncio.run(
            bootstrap_create_source_control(settings).scm_fetch_versions(remote_url=parsed_arguments.remote_url)
        )
        for version in sorted(versions, reverse=True):
            print(version.display_string)
        return

    if parsed_arguments.command == "branches":
        _main_require(argument_parser, parsed_arguments, ("remote_url",))
        branches = asyncio.run(
            bootstrap_create_source_control(settings).scm_fetch_branches(remote_url=parsed_arguments.remote_url)
        )
        for branch in branches:
            print(f"{branch.name}\t{branch.commit_hash}")
        return

    if parsed_arguments.command == "build":
        _main_require(
            argument_parser,
            parsed_arguments,
            ("remote_url", "project_name", "scheme_name", "platforms", "version", "build_number", "export_kinds"),
        )
        payload = main_build_payload(parsed_arguments)
        if not asyncio.run(main_run_build(settings, payload)):
            raise SystemExit(1)
        return

    application = bootstrap_create_application(settings)
    uvicorn.run(
        application,
        host=settings.application_host,
        port=settings.application_port,
    )


def main_build_payload(parsed_arguments: argparse.Namespace) -> BuildPayload:
    """Convert parsed `build` arguments to a build payload.

    Args:
        parsed_arguments: Parsed command line namespace.

    Returns:
        BuildPayload: Build request.

    Raises:
        ValueError: Raised when the branch name is blank.
    """

    source = (
        SourceSelection.from_branch(parsed_arguments.branch_name)
        if parsed_arguments.branch_name
        else SourceSelection.from_tag()
    )
    return BuildPayload(
        project=ProjectDescriptor(
            name=parsed_arguments.project_name,
            git_remote_url=parsed_arguments.remote_url,
            xcodeproj_name=parsed_arguments.xcodeproj_name or parsed_arguments.project_name,
            bundle_identifier=parsed_arguments.bundle_identifier,
        ),
        scheme=SchemeDescriptor(
            name=parsed_arguments.scheme_name,
            platforms=tuple(Platform(value) for value in parsed_arguments.platforms),
        ),
        version=Version(
            version=parsed_arguments.version,
            build_number=parsed_arguments.build_number,
            commit_hash=parsed_arguments.commit_hash,
        ),
        source=source,
        export_kinds=tuple(ExportKind(value) for value in parsed_arguments.export_kinds),
    )


async def main_run_build(settings: AppSettings, payload: BuildPayload) -> bool:
    """Run one build in the foreground and print its progress.

    Args:
        settings: Validated runtime settings.
        payload: Build request.

    Returns:
        bool: Whether the build completed.

    Raises:
        RuntimeError: This helper reports failures through the return value.
    """

    log_buffer = BuildLogBuffer()
    job = bootstrap_create_job_factory(settings)(payload, log_buffer)
    try:
        async with aclosing(job.job_stream_progress()) as progress_events:
            async for event in progress_events:
                print(f"[{event.progress:>4.0%}] {event.message}")
    except BuildJobCancelledError:
        print("Build cancelled")
        return False
    except Exception as error:  # pylint: disable=broad-exception-caught
        error_entries = log_buffer.buffer_snapshot(level=LogLevel.ERROR)
        print(f"Build failed: {type(error).__name__}: {error}")
        print(f"{len(error_entries)} error log entries, {len(log_buffer)} entries total")
        return False
    return True


def _main_require(
    argument_parser: argparse.ArgumentParser,
    parsed_arguments: argparse.Namespace,
    names: tuple[str, ...],
) -> None:
    missing = [name for name in names if getattr(parsed_arguments, name) in (None, [], "")]
    if missing:
        argument_parser.error(f"{parsed_arguments.command} requires: {', '.join(missing)}")


if __name__ == "__main__":
    main()
