"""Health endpoint router for app, database and schema checks."""

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from release_builder.db import DatabaseHealthPort


def api_create_health_router(db_health_service: DatabaseHealthPort) -> APIRouter:
    """Create health-check router with app and database status.

    Args:
        db_health_service: DB-layer health service interface.

    Returns:
        APIRouter: Router exposing `/health` endpoint.

    Raises:
        ValueError: Raised when db_health_service is invalid.
    """

    if db_health_service is None:
        raise ValueError("db_health_service must not be None")

    router = APIRouter(tags=["health"])

    @router.get("/health")
    def api_health_status() -> JSONResponse:
        """Return application and database health state.

        An unreachable database and an unmigrated schema both report
        `degraded` with HTTP 503.

        Returns:
            JSONResponse: Deterministic health payload for operational checks.
        """

        target = db_health_service.db_connection_label()
        try:
            db_health = db_health_service.db_check_health()
        except ConnectionError as error:
            payload = {"status": "degraded", "app": "up", "database": "down", "detail": str(error), "target": target}
            return JSONResponse(content=payload, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)

        is_healthy = db_health.status == "ok"
        payload = {
            "status": "ok" if is_healthy else "degraded",
            "app": "up",
            "database": db_health.status,
            "detail": db_health.detail,
            "target": target,
        }
        return JSONResponse(
            content=payload,
            status_code=status.HTTP_200_OK if is_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    return router
