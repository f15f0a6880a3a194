"""Build-identity keyed filesystem layout for build jobs."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Final

from release_builder.domain import BuildPayload, ExportKind, Platform, ProjectDescriptor

_PACKAGE_DIRECTORY_SUFFIXES: Final[frozenset[str]] = frozenset(
    {".app", ".appex", ".bundle", ".framework", ".xcarchive", ".xcodeproj", ".xcworkspace", ".xcassets", ".dSYM"}
)


class PathLayout:
    """Deterministic directory layout rooted at one builder directory.

    Every build gets `root/<project>/<tag>-<build_id>/`, so rebuilding the
    same version and build number never reuses a directory.
    """

    def __init__(self, root_dir: Path):
        """Initialize path layout.

        Args:
            root_dir: Builder root directory.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when root_dir is blank.
        """

        if not str(root_dir).strip():
            raise ValueError("root_dir must not be blank")
        self._root_dir = Path(root_dir).expanduser()

    @property
    def root_dir(self) -> Path:
        return self._root_dir

    def path_root_for_project(self, project: ProjectDescriptor) -> Path:
        """Return directory holding every build of one project."""

        return self._root_dir / project.name

    def path_build_root(self, payload: BuildPayload) -> Path:
        """Return directory exclusive to one build."""

        return self.path_root_for_project(payload.project) / f"{payload.version.tag_name}-{payload.build_id}"

    def path_source_checkout(self, payload: BuildPayload) -> Path:
        """Return source checkout directory."""

        return self.path_build_root(payload) / "Source"

    def path_project_file(self, payload: BuildPayload) -> Path:
        """Return `.xcodeproj` path inside the checkout."""

        return self.path_source_checkout(payload) / f"{payload.project.xcodeproj_name}.xcodeproj"

    def path_intermediates(self, payload: BuildPayload) -> Path:
        """Return derived data directory."""

        return self.path_build_root(payload) / "DerivedData"

    def path_archive(self, payload: BuildPayload, platform: Platform) -> Path:
        """Return archive path for one platform, named from the version display string."""

        return self.path_build_root(payload) / "Archives" / platform.value / f"{payload.version.display_string}.xcarchive"

    def path_export(self, payload: BuildPayload, export_kind: ExportKind) -> Path | None:
        """Return export directory, or None when the kind does not export to a path.

        Store exports upload directly from the build tool, so they have no
        export directory.
        """

        if not export_kind.is_testing_distribution:
            return None
        return self.path_build_root(payload) / "Exports" / payload.version.display_string

    def path_export_options(self, payload: BuildPayload, export_kind: ExportKind) -> Path:
        """Return export options property list path for one kind inside the build root."""

        return self.path_build_root(payload) / "ExportOptions" / f"exportOptions_{export_kind.value}.plist"


def path_find_file(file_name: str, search_dir: Path) -> Path | None:
    """Return the first file named `file_name` below `search_dir`.

    Hidden entries and the contents of package directories are skipped.
    The result follows filesystem enumeration order, so this is a
    best-effort single-result lookup, not a general search.

    Args:
        file_name: Exact file name to find.
        search_dir: Directory to search recursively.

    Returns:
        Path | None: First matching path, or None.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    if not search_dir.is_dir():
        return None

    for current_dir, dir_names, file_names in os.walk(search_dir):
        dir_names[:] = [
            dir_name
            for dir_name in dir_names
            if not dir_name.startswith(".") and Path(dir_name).suffix not in _PACKAGE_DIRECTORY_SUFFIXES
        ]
        for candidate_name in file_names:
            if candidate_name.startswith("."):
                continue
            if candidate_name == file_name:
                return Path(current_dir) / candidate_name
    return None


def path_ensure_parent(path: Path) -> Path:
    """Create the parent directory of path and return path unchanged."""

    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def path_ensure_dir(path: Path) -> Path:
    """Create directory path and return it unchanged."""

    path.mkdir(parents=True, exist_ok=True)
    return path
