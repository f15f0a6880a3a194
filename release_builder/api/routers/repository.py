"""Repository API router for remote release tag and branch listings."""

from __future__ import annotations

from fastapi import APIRouter, Query, status
from fastapi.responses import JSONResponse

from release_builder.adapters import ProcessError, SourceControlPort


def api_create_repository_router(source_control: SourceControlPort) -> APIRouter:
    """Create repository router listing remote versions and branches.

    Args:
        source_control: Adapter-layer source-control client.

    Returns:
        APIRouter: Router exposing `/repository/versions` and `/repository/branches`.

    Raises:
        ValueError: Raised when source_control is invalid.
    """

    if source_control is None:
        raise ValueError("source_control must not be None")

    router = APIRouter(prefix="/repository", tags=["repository"])

    @router.get("/versions")
    async def api_repository_versions(remote_url: str = Query(min_length=1)) -> JSONResponse:
        """Return release versions parsed from remote tags, newest first.

        Args:
            remote_url: Remote repository URL.

        Returns:
            JSONResponse: Versions payload, or 502 when the remote cannot be listed.

        Raises:
            RuntimeError: Raised when listing fails unexpectedly.
        """

        try:
            versions = await source_control.scm_fetch_versions(remote_url=remote_url.strip())
        except ProcessError as error:
            return _api_remote_error_response(error)

        payload = {
            "remote_url": remote_url.strip(),
            "items": [
                {
                    "version": version.version,
                    "build_number": version.build_number,
                    "commit_hash": version.commit_hash,
                    "tag_name": version.tag_name,
                    "display_string": version.display_string,
                }
                for version in sorted(versions, reverse=True)
            ],
        }
        return JSONResponse(content=payload, status_code=status.HTTP_200_OK)

    @router.get("/branches")
    async def api_repository_branches(remote_url: str = Query(min_length=1)) -> JSONResponse:
        """Return remote branch heads sorted by name.

        Args:
            remote_url: Remote repository URL.

        Returns:
            JSONResponse: Branches payload, or 502 when the remote cannot be listed.

        Raises:
            RuntimeError: Raised when listing fails unexpectedly.
        """

        try:
            branches = await source_control.scm_fetch_branches(remote_url=remote_url.strip())
        except ProcessError as error:
            return _api_remote_error_response(error)

        payload = {
            "remote_url": remote_url.strip(),
            "items": [{"name": branch.name, "commit_hash": branch.commit_hash} for branch in branches],
        }
        return JSONResponse(content=payload, status_code=status.HTTP_200_OK)

    return router


def _api_remote_error_response(error: ProcessError) -> JSONResponse:
    payload = {
        "status": "error",
        "code": "REMOTE_LISTING_FAILED",
        "message": str(error),
    }
    return JSONResponse(content=payload, status_code=status.HTTP_502_BAD_GATEWAY)
