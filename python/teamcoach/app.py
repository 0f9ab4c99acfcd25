"""FastAPI application creation and configuration.

This module creates and configures the FastAPI application instance.
It registers exception handlers, auth middleware, request-id middleware, and routes.

Stores:
- One Stores (caches + stores + reconciler) is built per app instance and
  kept on app.state.stores; routes reach it through get_stores
- The cache sweeper thread is started and stopped by the lifespan

Middleware Ordering (Critical):
- Middleware runs in reverse order of registration
- RequestIDMiddleware is added LAST so it runs FIRST (outermost)
- This ensures all requests (including auth failures) get X-Request-ID

Actual execution order per request:
1. RequestIDMiddleware (sets request_id, starts timer)
2. AuthMiddleware (verifies token, resolves the account, sets viewer)
3. Route handler
4. AuthMiddleware (returns response)
5. RequestIDMiddleware (logs, sets response header)
"""

import json
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from teamcoach.api.routes import create_api_router
from teamcoach.auth.middleware import AuthMiddleware, IdentityCallback
from teamcoach.auth.verifier import JwksTokenVerifier
from teamcoach.config import get_settings
from teamcoach.db.session import get_session_factory
from teamcoach.errors import ApiError, ApiErrorCode
from teamcoach.logging import configure_logging, get_logger
from teamcoach.middleware.request_id import RequestIDMiddleware
from teamcoach.responses import (
    api_error_handler,
    error_json,
    http_exception_handler,
    unhandled_exception_handler,
    validation_error_handler,
)
from teamcoach.schemas.account import AccountOut, IdentityClaim
from teamcoach.stores import Stores, build_stores

logger = get_logger(__name__)


def create_identity_callback(stores: Stores) -> IdentityCallback:
    """Create the callback the auth middleware uses to resolve a claim.

    Each call opens its own database session, runs the reconciler, and
    closes the session.
    """
    session_factory = get_session_factory()

    def resolve(claim: IdentityClaim) -> AccountOut:
        db = session_factory()
        try:
            return stores.identity.resolve(db, claim)
        finally:
            db.close()

    return resolve


def create_token_verifier() -> JwksTokenVerifier:
    """Create the JWKS token verifier from settings.

    All environments use the same verifier; only the JWKS URL, issuer and
    audiences change.
    """
    settings = get_settings()

    return JwksTokenVerifier(
        jwks_url=settings.identity_jwks_url,  # type: ignore
        issuer=settings.normalized_issuer,  # type: ignore
        audiences=settings.audience_list,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the cache sweeper for the lifetime of the app."""
    stores: Stores = app.state.stores
    if stores.sweeper is not None:
        stores.sweeper.start()
    yield
    if stores.sweeper is not None:
        stores.sweeper.stop()
    logger.info("cache_stats", caches=[cache.stats for cache in stores.caches])


def create_app(
    skip_auth_middleware: bool = False,
    token_verifier=None,
    identity_callback: IdentityCallback | None = None,
    stores: Stores | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        skip_auth_middleware: If True, skip adding auth middleware (for testing).
        token_verifier: Optional custom token verifier (for testing).
        identity_callback: Optional claim resolver; defaults to the
            reconciler of this app's stores with its own sessions.
        stores: Optional prebuilt Stores (for testing).

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()
    configure_logging(json_format=settings.use_json_logs)

    app = FastAPI(
        title="Teamcoach API",
        description="Persistence API for the team coaching assistant",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.stores = stores or build_stores(settings)

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.add_exception_handler(RequestValidationError, validation_error_handler)

    @app.middleware("http")
    async def catch_json_decode_errors(request: Request, call_next):
        """Catch JSON decode errors before they reach route handlers."""
        if request.method in ("POST", "PUT", "PATCH"):
            content_type = request.headers.get("content-type", "")
            if "application/json" in content_type:
                body = await request.body()
                if body:
                    try:
                        json.loads(body)
                    except json.JSONDecodeError:
                        return error_json(ApiErrorCode.E_INVALID_REQUEST, "Malformed JSON body")
        return await call_next(request)

    app.include_router(create_api_router())

    if not skip_auth_middleware:
        verifier = token_verifier or create_token_verifier()
        callback = identity_callback or create_identity_callback(app.state.stores)

        app.add_middleware(
            AuthMiddleware,
            verifier=verifier,
            requires_internal_header=settings.requires_internal_header,
            internal_secret=settings.teamcoach_internal_secret,
            identity_callback=callback,
        )

        logger.info(
            "auth_middleware_enabled",
            env=settings.teamcoach_env.value,
            internal_header_required=settings.requires_internal_header,
        )

    return app


def add_request_id_middleware(app: FastAPI, log_requests: bool = True) -> None:
    """Add request-id middleware to the app.

    Call this AFTER all other middleware is added, so it runs FIRST and
    every response includes X-Request-ID, including auth failures.
    """
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)
    logger.info("request_id_middleware_enabled")
