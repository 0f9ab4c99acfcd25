"""API route definitions.

Uses a factory pattern to avoid import-time settings loading.
This allows tests to import modules without requiring all environment
variables to be configured upfront.
"""

from fastapi import APIRouter

from teamcoach.api.routes.admin import router as admin_router
from teamcoach.api.routes.conversations import router as conversations_router
from teamcoach.api.routes.health import router as health_router
from teamcoach.api.routes.me import router as me_router
from teamcoach.api.routes.migration import router as migration_router
from teamcoach.api.routes.team_members import router as team_members_router


def create_api_router() -> APIRouter:
    """Create and configure the API router.

    The migration router is included before the conversations router so
    its static /conversations/* paths win over /conversations/{id}.
    """
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(me_router, tags=["account"])
    api_router.include_router(admin_router, tags=["admin"])
    api_router.include_router(team_members_router)
    api_router.include_router(migration_router)
    api_router.include_router(conversations_router)
    return api_router


__all__ = ["create_api_router"]
