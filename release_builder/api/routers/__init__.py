"""API router package for endpoint composition."""

from .builds import api_create_builds_router
from .health import api_create_health_router
from .repository import api_create_repository_router

__all__ = ["api_create_builds_router", "api_create_health_router", "api_create_repository_router"]
