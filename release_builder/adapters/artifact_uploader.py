"""HTTP artifact uploader for testing-distribution exports."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Final

import httpx

from release_builder.domain import ProjectDescriptor, Version

from .interfaces import ArtifactUploaderPort
from .shell_errors import UploadError

logger = logging.getLogger(__name__)


class HttpArtifactUploader(ArtifactUploaderPort):
    """Uploader posting one artifact file as multipart form data."""

    _ARTIFACT_SUFFIX: Final[str] = ".ipa"

    def __init__(
        self,
        upload_url: str | None,
        timeout_seconds: float = 300.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize HTTP artifact uploader.

        Args:
            upload_url: Destination endpoint, or None when uploads are not configured.
            timeout_seconds: Request timeout in seconds.
            transport: Optional httpx transport override.

        Returns:
            None: Initializer does not return a value.

        Raises:
            ValueError: Raised when timeout is not positive.
        """

        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        normalized_upload_url = (upload_url or "").strip()
        self._upload_url = normalized_upload_url or None
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    async def uploader_upload(self, project: ProjectDescriptor, version: Version, artifact_path: Path) -> str:
        """Upload one artifact and return the destination identifier.

        Args:
            project: Project the artifact belongs to.
            version: Version the artifact was built from.
            artifact_path: Artifact file, or export directory holding one `.ipa`.

        Returns:
            str: Identifier from the response `id` field, or the response text.

        Raises:
            UploadError: Raised when uploads are not configured, the artifact is missing,
                transport fails, or the destination rejects the upload.
        """

        if self._upload_url is None:
            raise UploadError("artifact upload destination is not configured")

        artifact_file = self._uploader_resolve_artifact_file(artifact_path)
        logger.info("uploading %s for %s %s", artifact_file, project.name, version.display_string)

        form_fields = {
            "project": project.name,
            "bundle_identifier": project.bundle_identifier,
            "version": version.version,
            "build_number": str(version.build_number),
            "commit_hash": version.commit_hash,
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds, transport=self._transport) as client:
                with artifact_file.open("rb") as artifact_stream:
                    response = await client.post(
                        self._upload_url,
                        data=form_fields,
                        files={"file": (artifact_file.name, artifact_stream, "application/octet-stream")},
                    )
        except httpx.TimeoutException as error:
            raise UploadError(f"artifact upload timed out: {error}") from error
        except httpx.HTTPError as error:
            raise UploadError(f"artifact upload failed: {error}") from error

        if response.status_code < 200 or response.status_code >= 300:
            raise UploadError(
                f"artifact upload rejected with HTTP {response.status_code}: {response.text[:500]}",
                status_code=response.status_code,
            )

        return self._uploader_extract_identifier(response)

    def _uploader_resolve_artifact_file(self, artifact_path: Path) -> Path:
        if artifact_path.is_file():
            return artifact_path
        if artifact_path.is_dir():
            candidates = sorted(artifact_path.glob(f"*{self._ARTIFACT_SUFFIX}"))
            if candidates:
                return candidates[0]
        raise UploadError(f"no uploadable artifact found at {artifact_path}")

    def _uploader_extract_identifier(self, response: httpx.Response) -> str:
        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            try:
                payload = response.json()
            except ValueError as error:
                raise UploadError("artifact upload returned invalid JSON") from error
            if isinstance(payload, dict) and payload.get("id") is not None:
                return str(payload["id"])
        return response.text.strip()
