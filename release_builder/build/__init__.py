"""Build layer package for command rendering, path layout and manifest rewriting."""

from .commands import BuildCommandKind, BuildCommandParameters, build_command_render
from .export_options import build_write_export_options
from .paths import PathLayout, path_ensure_dir, path_ensure_parent, path_find_file
from .project_versions import ProjectVersionUpdateResult, build_update_project_versions

__all__ = [
	"BuildCommandKind",
	"BuildCommandParameters",
	"PathLayout",
	"ProjectVersionUpdateResult",
	"build_command_render",
	"build_update_project_versions",
	"build_write_export_options",
	"path_ensure_dir",
	"path_ensure_parent",
	"path_find_file",
]
