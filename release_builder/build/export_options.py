"""Export options property list materialization."""

from __future__ import annotations

from pathlib import Path
import plistlib

from release_builder.domain import ExportKind

from .paths import path_ensure_parent


def build_write_export_options(export_kind: ExportKind, options_path: Path) -> Path:
    """Write the export options property list for one export kind.

    Args:
        export_kind: Export kind whose options are written.
        options_path: Destination property list path.

    Returns:
        Path: Written property list path.

    Raises:
        OSError: Raised when the file cannot be written.
    """

    path_ensure_parent(options_path)
    options_path.write_bytes(plistlib.dumps(export_kind.export_options()))
    return options_path
