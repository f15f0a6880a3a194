"""Native build tool command rendering for pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
import shlex

from release_builder.domain import ExportKind, Platform, SchemeDescriptor, Version


class BuildCommandKind(str, Enum):
    """Build tool stage a command is rendered for."""

    RESOLVE_DEPENDENCIES = "resolve_dependencies"
    ARCHIVE = "archive"
    EXPORT_ARCHIVE = "export_archive"

    @property
    def action(self) -> str:
        """Return trailing build tool action arguments."""

        if self is BuildCommandKind.ARCHIVE:
            return "clean archive"
        if self is BuildCommandKind.EXPORT_ARCHIVE:
            return "-exportArchive"
        return "-resolvePackageDependencies"


@dataclass(frozen=True)
class BuildCommandParameters:
    """Inputs for rendering one build tool invocation.

    Attributes:
        kind: Pipeline stage.
        scheme: Scheme to build.
        version: Version being built.
        platform: Target platform.
        project_path: `.xcodeproj` path.
        archive_path: `.xcarchive` path.
        intermediates_path: Derived data path.
        export_kind: Optional export kind; requires `export_options_path`.
        export_options_path: Export options property list path.
        export_path: Optional export destination directory.
    """

    kind: BuildCommandKind
    scheme: SchemeDescriptor
    version: Version
    platform: Platform
    project_path: Path
    archive_path: Path
    intermediates_path: Path
    export_kind: ExportKind | None = None
    export_options_path: Path | None = None
    export_path: Path | None = None


def build_command_render(parameters: BuildCommandParameters, executable: str = "xcodebuild") -> str:
    """Render the exact build tool command line for one stage.

    Export commands operate purely from the archive, so the scheme,
    destination and derived data flags are omitted for them.

    Args:
        parameters: Stage parameters.
        executable: Build tool binary.

    Returns:
        str: Shell-quoted command line.

    Raises:
        ValueError: Raised when an export kind is given without an options path.
    """

    if parameters.export_kind is not None and parameters.export_options_path is None:
        raise ValueError("export_options_path is required when export_kind is set")

    is_export = parameters.kind is BuildCommandKind.EXPORT_ARCHIVE
    segments = [
        shlex.quote(executable),
        f"-project {_quote_path(parameters.project_path)}",
        "-skipMacroValidation",
        "-skipPackagePluginValidation",
        "" if is_export else f"-derivedDataPath {_quote_path(parameters.intermediates_path)}",
        f"-archivePath {_quote_path(parameters.archive_path)}",
        "" if is_export else f"-scheme {shlex.quote(parameters.scheme.name)}",
        "" if is_export else parameters.platform.destination_flags,
        (
            f"-exportOptionsPlist {_quote_path(parameters.export_options_path)}"
            if parameters.export_kind is not None and parameters.export_options_path is not None
            else ""
        ),
        f"-exportPath {_quote_path(parameters.export_path)}" if parameters.export_path is not None else "",
        parameters.kind.action,
    ]
    return " ".join(segment for segment in segments if segment)


def _quote_path(path: Path) -> str:
    return shlex.quote(str(path))
