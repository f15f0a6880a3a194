"""Build API router composition for submit, cancel, status and log endpoints."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from release_builder.config import AppSettings
from release_builder.db import BuildRunRecord, BuildRunRepositoryPort
from release_builder.domain import (
    BuildJobAlreadyRunningError,
    BuildJobNotFoundError,
    BuildPayload,
    ExportKind,
    LogEntry,
    Platform,
    ProjectDescriptor,
    SchemeDescriptor,
    SourceSelection,
    Version,
    VersionValidationError,
)
from release_builder.jobs import BuildJobManager, BuildJobStatus


class BuildSubmitRequest(BaseModel):
    """Request body for one build submission."""

    project_name: str = Field(min_length=1)
    git_remote_url: str = Field(min_length=1)
    xcodeproj_name: str = Field(min_length=1)
    bundle_identifier: str = ""
    scheme_name: str = Field(min_length=1)
    platforms: list[Platform] = Field(min_length=1)
    version: str
    build_number: int
    commit_hash: str = ""
    branch_name: str | None = None
    export_kinds: list[ExportKind] = Field(min_length=1)

    def request_to_payload(self) -> BuildPayload:
        """Convert request body to an immutable build payload.

        Returns:
            BuildPayload: Build request with a fresh build id.

        Raises:
            ValueError: Raised when branch name is blank.
        """

        source = SourceSelection.from_tag() if self.branch_name is None else SourceSelection.from_branch(self.branch_name)
        return BuildPayload(
            project=ProjectDescriptor(
                name=self.project_name.strip(),
                git_remote_url=self.git_remote_url.strip(),
                xcodeproj_name=self.xcodeproj_name.strip(),
                bundle_identifier=self.bundle_identifier.strip(),
            ),
            scheme=SchemeDescriptor(name=self.scheme_name.strip(), platforms=tuple(self.platforms)),
            version=Version(version=self.version.strip(), build_number=self.build_number, commit_hash=self.commit_hash),
            source=source,
            export_kinds=tuple(self.export_kinds),
        )


def api_create_builds_router(
    settings: AppSettings,
    build_job_manager: BuildJobManager,
    build_run_repository: BuildRunRepositoryPort,
) -> APIRouter:
    """Create builds router with submit, list, detail, cancel and log endpoints.

    Args:
        settings: Runtime settings used for pagination defaults.
        build_job_manager: Job-layer build manager.
        build_run_repository: DB-layer build run repository for list queries.

    Returns:
        APIRouter: Router exposing build APIs.

    Raises:
        ValueError: Raised when dependencies are invalid.
    """

    if settings is None:
        raise ValueError("settings must not be None")
    if build_job_manager is None:
        raise ValueError("build_job_manager must not be None")
    if build_run_repository is None:
        raise ValueError("build_run_repository must not be None")

    router = APIRouter(prefix="/builds", tags=["builds"])

    @router.post("")
    async def api_build_submit(request: BuildSubmitRequest) -> JSONResponse:
        """Validate and submit one build.

        Args:
            request: Build submission body.

        Returns:
            JSONResponse: Initial status payload with HTTP 202.

        Raises:
            RuntimeError: Raised when persistence fails unexpectedly.
        """

        if len(set(request.export_kinds)) != len(request.export_kinds):
            return _api_error_response(
                status.HTTP_422_UNPROCESSABLE_ENTITY,
                "DUPLICATE_EXPORT_KIND",
                "export_kinds must not contain duplicates",
            )
        try:
            payload = request.request_to_payload()
            payload.version.version_validate()
        except VersionValidationError as error:
            return _api_error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, error.reason.value.upper(), str(error))
        except ValueError as error:
            return _api_error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, "INVALID_REQUEST", str(error))

        try:
            build_status = build_job_manager.manager_submit(payload)
        except BuildJobAlreadyRunningError as error:
            return _api_error_response(status.HTTP_409_CONFLICT, "BUILD_ALREADY_RUNNING", str(error))

        return JSONResponse(content=api_serialize_build_status(build_status), status_code=status.HTTP_202_ACCEPTED)

    @router.get("")
    def api_build_list(
        limit: int = Query(default=settings.api_default_limit, ge=1),
        offset: int = Query(default=0, ge=0),
    ) -> JSONResponse:
        """Return build runs ordered by latest first.

        Args:
            limit: Max rows to return.
            offset: Rows to skip.

        Returns:
            JSONResponse: Runs list payload.

        Raises:
            RuntimeError: Raised when repository read fails.
        """

        applied_limit = min(limit, settings.api_max_limit)
        run_records = build_run_repository.db_build_run_list(limit=applied_limit, offset=offset)
        payload = {
            "items": [api_serialize_build_run_record(run_record) for run_record in run_records],
            "page": {
                "limit": limit,
                "applied_limit": applied_limit,
                "offset": offset,
                "returned": len(run_records),
            },
        }
        return JSONResponse(content=payload, status_code=status.HTTP_200_OK)

    @router.get("/{build_id}")
    def api_build_detail(build_id: UUID) -> JSONResponse:
        """Return one build run detail payload.

        Args:
            build_id: Build identifier.

        Returns:
            JSONResponse: Run detail payload or 404 when absent.

        Raises:
            RuntimeError: Raised when repository read fails.
        """

        run_record = build_run_repository.db_build_run_get_by_id(build_id)
        if run_record is None:
            return _api_error_response(status.HTTP_404_NOT_FOUND, "BUILD_NOT_FOUND", "build not found")
        return JSONResponse(content=api_serialize_build_run_record(run_record), status_code=status.HTTP_200_OK)

    @router.post("/{build_id}/cancel")
    def api_build_cancel(build_id: UUID) -> JSONResponse:
        """Request cancellation of one build.

        Args:
            build_id: Build identifier.

        Returns:
            JSONResponse: Status payload with HTTP 202, or 404 when absent.

        Raises:
            RuntimeError: Raised when repository read fails.
        """

        try:
            build_status = build_job_manager.manager_cancel(build_id)
        except BuildJobNotFoundError:
            return _api_error_response(status.HTTP_404_NOT_FOUND, "BUILD_NOT_FOUND", "build not found")
        return JSONResponse(content=api_serialize_build_status(build_status), status_code=status.HTTP_202_ACCEPTED)

    @router.get("/{build_id}/logs")
    def api_build_logs(
        build_id: UUID,
        limit: int | None = Query(default=None, ge=1),
        offset: int = Query(default=0, ge=0),
    ) -> JSONResponse:
        """Return log entries of one build in append order.

        Args:
            build_id: Build identifier.
            limit: Optional max entries to return.
            offset: Entries to skip.

        Returns:
            JSONResponse: Log entries payload or 404 when absent.

        Raises:
            RuntimeError: Raised when repository read fails.
        """

        try:
            entries = build_job_manager.manager_logs(build_id, limit=limit, offset=offset)
        except BuildJobNotFoundError:
            return _api_error_response(status.HTTP_404_NOT_FOUND, "BUILD_NOT_FOUND", "build not found")
        payload = {
            "build_id": str(build_id),
            "items": [api_serialize_log_entry(entry) for entry in entries],
        }
        return JSONResponse(content=payload, status_code=status.HTTP_200_OK)

    return router


def api_serialize_build_status(build_status: BuildJobStatus) -> dict[str, object]:
    """Serialize build status snapshot to JSON response payload."""

    return {
        "build_id": str(build_status.build_id),
        "state": build_status.state.value,
        "progress": build_status.progress,
        "message": build_status.message,
        "error_code": build_status.error_code,
        "error_message": build_status.error_message,
    }


def api_serialize_build_run_record(run_record: BuildRunRecord) -> dict[str, object]:
    """Serialize typed build run row to JSON response payload.

    Args:
        run_record: Typed build run record.

    Returns:
        dict[str, object]: JSON-serializable build run payload.

    Raises:
        RuntimeError: This helper does not raise runtime errors.
    """

    return {
        "build_id": str(run_record.build_id),
        "project_name": run_record.reference.project_name,
        "scheme_name": run_record.reference.scheme_name,
        "version": run_record.reference.version.version,
        "build_number": run_record.reference.version.build_number,
        "tag_name": run_record.reference.version.tag_name,
        "source_branch": run_record.reference.source_branch,
        "export_kinds": [kind.value for kind in run_record.reference.export_kinds],
        "state": run_record.state.state.value,
        "progress": run_record.state.progress,
        "message": run_record.state.message,
        "started_at_utc": run_record.state.started_at_utc.isoformat(),
        "ended_at_utc": run_record.state.ended_at_utc.isoformat() if run_record.state.ended_at_utc else None,
        "error_code": run_record.state.error_code,
        "error_message": run_record.state.error_message,
    }


def api_serialize_log_entry(entry: LogEntry) -> dict[str, object]:
    """Serialize one build log entry to JSON response payload."""

    return {
        "entry_id": str(entry.entry_id),
        "category": entry.category.value,
        "level": entry.level.value,
        "content": entry.content,
        "created_at_utc": entry.created_at_utc.isoformat(),
    }


def _api_error_response(status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "status": "error",
        "code": code,
        "message": message,
    }
    return JSONResponse(content=payload, status_code=status_code)
