"""Authentication middleware for FastAPI.

Provides:
- AuthMiddleware: Global middleware for bearer token + internal header verification
- get_viewer: Dependency for accessing authenticated viewer identity
"""

import hmac
import logging
from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from teamcoach.auth.verifier import TokenVerifier
from teamcoach.errors import ApiError, ApiErrorCode, IdentityResolutionFailedError
from teamcoach.logging import set_account_context
from teamcoach.responses import error_json
from teamcoach.schemas.account import AccountOut, IdentityClaim

logger = logging.getLogger(__name__)

# Header names
AUTHORIZATION_HEADER = "authorization"
INTERNAL_HEADER = "x-teamcoach-internal"

# Paths that don't require authentication
PUBLIC_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

IdentityCallback = Callable[[IdentityClaim], AccountOut]


@dataclass
class Viewer:
    """Authenticated viewer identity.

    Attributes:
        account_id: The resolved account's permanent id (not the token subject).
        email: The account's normalized email.
        is_admin: Whether the account may use admin routes.
    """

    account_id: str
    email: str
    is_admin: bool = False


class AuthMiddleware(BaseHTTPMiddleware):
    """Authentication middleware for FastAPI.

    Order of checks:
    1. Skip if public path
    2. Verify internal header (if required)
    3. Extract and parse bearer token
    4. Verify token via TokenVerifier
    5. Resolve the token's identity claim to exactly one account
    6. Attach Viewer to request state

    A claim that cannot be resolved fails this request with 401
    E_IDENTITY_RESOLUTION_FAILED; nothing is cached for it, so the next
    request resolves afresh.
    """

    def __init__(
        self,
        app: ASGIApp,
        verifier: TokenVerifier,
        requires_internal_header: bool = False,
        internal_secret: str | None = None,
        identity_callback: IdentityCallback | None = None,
    ):
        """Initialize the auth middleware.

        Args:
            app: The ASGI application.
            verifier: TokenVerifier implementation for JWT verification.
            requires_internal_header: Whether to enforce the internal header.
            internal_secret: The expected internal secret value.
            identity_callback: Function(claim) -> AccountOut. Runs identity
                reconciliation with its own database session.
        """
        super().__init__(app)
        self.verifier = verifier
        self.requires_internal_header = requires_internal_header
        self.internal_secret = internal_secret
        self.identity_callback = identity_callback

    async def dispatch(self, request: Request, call_next) -> JSONResponse:
        """Process the request through auth checks."""
        if request.url.path in PUBLIC_PATHS:
            return await call_next(request)

        if self.requires_internal_header:
            error_response_obj = self._verify_internal_header(request)
            if error_response_obj:
                return error_response_obj

        token, error_response_obj = self._extract_bearer_token(request)
        if error_response_obj:
            return error_response_obj

        try:
            payload = self.verifier.verify(token)
        except ApiError as e:
            return self._error_json_response(e.code, e.message, e.status_code)

        try:
            claim = IdentityClaim.from_token_claims(payload)
        except ValidationError:
            logger.warning(
                "auth_failure",
                extra={"reason": "invalid_identity_claim", "request_path": request.url.path},
            )
            return self._error_json_response(
                ApiErrorCode.E_IDENTITY_RESOLUTION_FAILED,
                "Token does not carry a usable identity",
                401,
            )

        if self.identity_callback is None:
            # No reconciler wired (tests): the subject stands in for the account id
            viewer = Viewer(account_id=claim.subject_id, email=claim.email)
        else:
            try:
                account = self.identity_callback(claim)
            except IdentityResolutionFailedError as e:
                logger.warning(
                    "auth_failure",
                    extra={"reason": "identity_resolution_failed", "request_path": request.url.path},
                )
                return self._error_json_response(e.code, e.message, e.status_code)
            except ApiError as e:
                return self._error_json_response(e.code, e.message, e.status_code)
            except Exception as e:
                logger.exception("Identity resolution crashed: %s", e)
                return self._error_json_response(
                    ApiErrorCode.E_INTERNAL,
                    "Internal server error",
                    500,
                )
            viewer = Viewer(account_id=account.id, email=account.email, is_admin=account.is_admin)

        request.state.viewer = viewer
        set_account_context(viewer.account_id)

        return await call_next(request)

    def _verify_internal_header(self, request: Request) -> JSONResponse | None:
        """Verify the internal header using constant-time comparison.

        Returns:
            JSONResponse if verification fails, None if successful.
        """
        header_value = request.headers.get(INTERNAL_HEADER)

        if header_value is None:
            logger.warning(
                "auth_failure",
                extra={"reason": "internal_header_missing", "request_path": request.url.path},
            )
            return self._error_json_response(
                ApiErrorCode.E_INTERNAL_ONLY,
                "Internal API access required",
                403,
            )

        if not self.internal_secret:
            logger.error("Internal secret not configured but header required")
            return self._error_json_response(
                ApiErrorCode.E_INTERNAL,
                "Internal server error",
                500,
            )

        if not hmac.compare_digest(header_value.encode(), self.internal_secret.encode()):
            logger.warning(
                "auth_failure",
                extra={"reason": "internal_header_mismatch", "request_path": request.url.path},
            )
            return self._error_json_response(
                ApiErrorCode.E_INTERNAL_ONLY,
                "Internal API access required",
                403,
            )

        return None

    def _extract_bearer_token(self, request: Request) -> tuple[str, JSONResponse | None]:
        """Extract bearer token from Authorization header.

        Returns:
            Tuple of (token, error_response). Token is empty string if error.
        """
        auth_header = request.headers.get(AUTHORIZATION_HEADER)

        if not auth_header:
            logger.warning(
                "auth_failure",
                extra={"reason": "missing_header", "request_path": request.url.path},
            )
            return "", self._error_json_response(
                ApiErrorCode.E_UNAUTHENTICATED,
                "Authentication required",
                401,
            )

        if not auth_header.lower().startswith("bearer "):
            logger.warning(
                "auth_failure",
                extra={"reason": "invalid_header_format", "request_path": request.url.path},
            )
            return "", self._error_json_response(
                ApiErrorCode.E_UNAUTHENTICATED,
                "Invalid authorization header format",
                401,
            )

        token = auth_header[7:].strip()
        if not token:
            logger.warning(
                "auth_failure",
                extra={"reason": "invalid_header_format", "request_path": request.url.path},
            )
            return "", self._error_json_response(
                ApiErrorCode.E_UNAUTHENTICATED,
                "Invalid authorization header format",
                401,
            )

        return token, None

    def _error_json_response(
        self, code: ApiErrorCode, message: str, status_code: int
    ) -> JSONResponse:
        return error_json(code, message, status_code)


def get_viewer(request: Request) -> Viewer:
    """FastAPI dependency to get the authenticated viewer.

    Raises:
        ApiError: If viewer is not set (middleware didn't run or path is public).
    """
    viewer = getattr(request.state, "viewer", None)
    if viewer is None:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Authentication required")
    return viewer


ViewerDep = Depends(get_viewer)
