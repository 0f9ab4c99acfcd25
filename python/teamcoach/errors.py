"""API error definitions.

All API errors are defined here with their corresponding HTTP status codes.
Persistence-core failures (duplicate email, identity resolution, storage
outages) share the same hierarchy so the request layer renders them with the
standard error envelope.
"""

from enum import Enum


class ApiErrorCode(str, Enum):
    """Standardized error codes for the API.

    Format: E_CATEGORY_NAME
    """

    # Authentication errors (401)
    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"
    E_IDENTITY_RESOLUTION_FAILED = "E_IDENTITY_RESOLUTION_FAILED"

    # Authorization errors (403)
    E_FORBIDDEN = "E_FORBIDDEN"
    E_INTERNAL_ONLY = "E_INTERNAL_ONLY"

    # Not found errors (404)
    E_NOT_FOUND = "E_NOT_FOUND"
    E_ACCOUNT_NOT_FOUND = "E_ACCOUNT_NOT_FOUND"
    E_CONVERSATION_NOT_FOUND = "E_CONVERSATION_NOT_FOUND"
    E_BACKUP_NOT_FOUND = "E_BACKUP_NOT_FOUND"
    E_TEAM_MEMBER_NOT_FOUND = "E_TEAM_MEMBER_NOT_FOUND"

    # Conflict errors (409)
    E_DUPLICATE_EMAIL = "E_DUPLICATE_EMAIL"
    E_TEAM_MEMBER_EXISTS = "E_TEAM_MEMBER_EXISTS"

    # Validation errors (400)
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_INVALID_LOCAL_HISTORY = "E_INVALID_LOCAL_HISTORY"
    E_PAYLOAD_TOO_LARGE = "E_PAYLOAD_TOO_LARGE"  # 413

    # Server errors
    E_AUTH_UNAVAILABLE = "E_AUTH_UNAVAILABLE"  # 503
    E_STORAGE_UNAVAILABLE = "E_STORAGE_UNAVAILABLE"  # 503
    E_INTERNAL = "E_INTERNAL"  # 500


# Error code to HTTP status mapping
ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    ApiErrorCode.E_UNAUTHENTICATED: 401,
    ApiErrorCode.E_IDENTITY_RESOLUTION_FAILED: 401,
    ApiErrorCode.E_FORBIDDEN: 403,
    ApiErrorCode.E_INTERNAL_ONLY: 403,
    ApiErrorCode.E_NOT_FOUND: 404,
    ApiErrorCode.E_ACCOUNT_NOT_FOUND: 404,
    ApiErrorCode.E_CONVERSATION_NOT_FOUND: 404,
    ApiErrorCode.E_BACKUP_NOT_FOUND: 404,
    ApiErrorCode.E_TEAM_MEMBER_NOT_FOUND: 404,
    ApiErrorCode.E_DUPLICATE_EMAIL: 409,
    ApiErrorCode.E_TEAM_MEMBER_EXISTS: 409,
    ApiErrorCode.E_INVALID_REQUEST: 400,
    ApiErrorCode.E_INVALID_LOCAL_HISTORY: 400,
    ApiErrorCode.E_PAYLOAD_TOO_LARGE: 413,
    ApiErrorCode.E_AUTH_UNAVAILABLE: 503,
    ApiErrorCode.E_STORAGE_UNAVAILABLE: 503,
    ApiErrorCode.E_INTERNAL: 500,
}


class ApiError(Exception):
    """Base exception for API errors.

    Attributes:
        code: The error code enum value
        message: Human-readable error message
        status_code: HTTP status code (derived from code)
    """

    def __init__(self, code: ApiErrorCode, message: str):
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)
        super().__init__(message)


class NotFoundError(ApiError):
    """Resource not found, or owned by another account."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)


class ForbiddenError(ApiError):
    """Authorization failure error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_FORBIDDEN, message: str = "Forbidden"):
        super().__init__(code, message)


class InvalidRequestError(ApiError):
    """Invalid request error."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)


class ConflictError(ApiError):
    """Write collides with an existing row."""

    def __init__(self, code: ApiErrorCode, message: str = "Conflict"):
        super().__init__(code, message)


class DuplicateEmailError(ConflictError):
    """An active account already uses this email."""

    def __init__(self, email: str):
        self.email = email
        super().__init__(ApiErrorCode.E_DUPLICATE_EMAIL, "An account with this email already exists")


class IdentityResolutionFailedError(ApiError):
    """An identity claim could not be mapped to an account.

    The request layer treats this as an authentication failure for the
    current request only.
    """

    def __init__(self, message: str = "Identity resolution failed"):
        super().__init__(ApiErrorCode.E_IDENTITY_RESOLUTION_FAILED, message)


class StorageUnavailableError(ApiError):
    """The durable store could not be reached."""

    def __init__(self, message: str = "Storage temporarily unavailable"):
        super().__init__(ApiErrorCode.E_STORAGE_UNAVAILABLE, message)
