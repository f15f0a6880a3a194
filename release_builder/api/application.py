"""FastAPI application factory for the release build service."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from release_builder.adapters import SourceControlPort
from release_builder.config import AppSettings
from release_builder.db import BuildRunRepositoryPort, DatabaseHealthPort
from release_builder.jobs import BuildJobManager

from .routers import api_create_builds_router, api_create_health_router, api_create_repository_router


def create_api_application(
    settings: AppSettings,
    db_health_service: DatabaseHealthPort,
    build_run_repository: BuildRunRepositoryPort,
    build_job_manager: BuildJobManager,
    source_control: SourceControlPort,
) -> FastAPI:
    """Create the FastAPI application instance for the service.

    Running builds are cancelled, and their cleanup awaited, when the
    application shuts down.

    Args:
        settings: Validated application settings used for runtime metadata.
        db_health_service: Database health service used by health endpoints.
        build_run_repository: Build run repository for list/detail APIs.
        build_job_manager: Job manager for submit/cancel/log APIs.
        source_control: Source-control client for remote listings.

    Returns:
        FastAPI: Framework application instance.

    Raises:
        RuntimeError: Raised if application initialization fails.
    """

    @asynccontextmanager
    async def application_lifespan(_application: FastAPI) -> AsyncIterator[None]:
        yield
        await build_job_manager.manager_shutdown()

    application = FastAPI(title="Release Builder", lifespan=application_lifespan)

    @application.get("/", tags=["foundation"])
    def foundation_index() -> dict[str, str]:
        """Return a minimal foundation response for bootstrap verification.

        Returns:
            dict[str, str]: Service identity and environment.
        """

        return {
            "service": "release-builder",
            "status": "foundation-ready",
            "environment": settings.environment_name,
        }

    application.include_router(api_create_health_router(db_health_service=db_health_service))
    application.include_router(
        api_create_builds_router(
            settings=settings,
            build_job_manager=build_job_manager,
            build_run_repository=build_run_repository,
        )
    )
    application.include_router(api_create_repository_router(source_control=source_control))

    return application
