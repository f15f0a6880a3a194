"""Rewrite version fields in checked-out project manifest files."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from pathlib import Path
import plistlib
import re
from typing import Final
from xml.parsers.expat import ExpatError

logger = logging.getLogger(__name__)

_INFO_PLIST_NAME: Final[str] = "Info.plist"
_PBXPROJ_NAME: Final[str] = "project.pbxproj"
_MARKETING_VERSION_PATTERN: Final[re.Pattern[str]] = re.compile(r"MARKETING_VERSION = [^;]+")
_PROJECT_VERSION_PATTERN: Final[re.Pattern[str]] = re.compile(r"CURRENT_PROJECT_VERSION = [^;]+")


@dataclass(frozen=True)
class ProjectVersionUpdateResult:
    """Files touched by one manifest version rewrite.

    Attributes:
        updated_files: Manifest files rewritten.
        skipped_files: Manifest files that could not be parsed or written.
    """

    updated_files: tuple[Path, ...]
    skipped_files: tuple[Path, ...]


def build_update_project_versions(checkout_dir: Path, version: str, build_number: int) -> ProjectVersionUpdateResult:
    """Set marketing version and build number in every manifest below checkout_dir.

    `Info.plist` files get `CFBundleShortVersionString`/`CFBundleVersion`;
    `project.pbxproj` files get `MARKETING_VERSION`/`CURRENT_PROJECT_VERSION`.
    Unreadable manifests are skipped and reported.

    Args:
        checkout_dir: Source checkout root.
        version: Marketing version text.
        build_number: Build number.

    Returns:
        ProjectVersionUpdateResult: Updated and skipped manifest paths.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    updated_files: list[Path] = []
    skipped_files: list[Path] = []
    build_number_text = str(build_number)

    for current_dir, dir_names, file_names in os.walk(checkout_dir):
        dir_names[:] = [dir_name for dir_name in dir_names if dir_name != ".git"]
        for file_name in file_names:
            file_path = Path(current_dir) / file_name
            if file_name == _INFO_PLIST_NAME:
                rewritten = _build_update_info_plist(file_path, version, build_number_text)
            elif file_name == _PBXPROJ_NAME:
                rewritten = _build_update_pbxproj(file_path, version, build_number_text)
            else:
                continue
            (updated_files if rewritten else skipped_files).append(file_path)

    return ProjectVersionUpdateResult(updated_files=tuple(updated_files), skipped_files=tuple(skipped_files))


def _build_update_info_plist(file_path: Path, version: str, build_number: str) -> bool:
    try:
        with file_path.open("rb") as plist_stream:
            plist_payload = plistlib.load(plist_stream)
        if not isinstance(plist_payload, dict):
            logger.warning("skipping %s: root object is not a dictionary", file_path)
            return False
        plist_payload["CFBundleShortVersionString"] = version
        plist_payload["CFBundleVersion"] = build_number
        with file_path.open("wb") as plist_stream:
            plistlib.dump(plist_payload, plist_stream)
    except (OSError, ExpatError, ValueError) as error:
        logger.warning("skipping %s: %s", file_path, error)
        return False
    logger.info("updated %s to version %s build %s", file_path, version, build_number)
    return True


def _build_update_pbxproj(file_path: Path, version: str, build_number: str) -> bool:
    try:
        content = file_path.read_text(encoding="utf-8")
        content = _MARKETING_VERSION_PATTERN.sub(f"MARKETING_VERSION = {version}", content)
        content = _PROJECT_VERSION_PATTERN.sub(f"CURRENT_PROJECT_VERSION = {build_number}", content)
        file_path.write_text(content, encoding="utf-8")
    except (OSError, UnicodeDecodeError) as error:
        logger.warning("skipping %s: %s", file_path, error)
        return False
    logger.info("updated %s to version %s build %s", file_path, version, build_number)
    return True
