"""FastAPI dependencies for route handlers.

Common dependencies like database sessions, the app's stores, and admin checks.
"""

from typing import Annotated

from fastapi import Depends, Request

from teamcoach.auth.middleware import Viewer, get_viewer
from teamcoach.db.session import get_db, get_session_factory
from teamcoach.errors import ForbiddenError
from teamcoach.stores import Stores

__all__ = ["get_db", "get_session_factory", "get_stores", "require_admin"]


def get_stores(request: Request) -> Stores:
    """Get the Stores built for this app instance in its lifespan."""
    return request.app.state.stores


def require_admin(viewer: Annotated[Viewer, Depends(get_viewer)]) -> Viewer:
    """Viewer dependency that only admits admin accounts.

    Raises:
        ForbiddenError(E_FORBIDDEN): Viewer is not an admin.
    """
    if not viewer.is_admin:
        raise ForbiddenError(message="Admin access required")
    return viewer
