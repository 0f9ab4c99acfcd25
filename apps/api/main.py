"""Thin API launcher.

This is the uvicorn entrypoint. All application logic lives in the teamcoach package.
Run with: uvicorn main:app --reload

The app instance is created here (not in teamcoach.app) so importing
create_app has no side effects and needs no environment configured.
"""

from teamcoach.app import add_request_id_middleware, create_app

app = create_app()
# Add request-id middleware LAST so it runs FIRST (outermost)
add_request_id_middleware(app)

__all__ = ["app"]
