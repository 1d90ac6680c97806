"""HTTP-facing error codes.

Token verification failures are defined separately in tokengate.auth.errors.
The auth middleware turns every one of them into E_UNAUTHENTICATED.
"""

from enum import Enum


class ApiErrorCode(str, Enum):
    """Codes returned in the `code` field of error bodies."""

    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"
    E_NOT_FOUND = "E_NOT_FOUND"
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_INTERNAL = "E_INTERNAL"


ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    ApiErrorCode.E_UNAUTHENTICATED: 401,
    ApiErrorCode.E_NOT_FOUND: 404,
    ApiErrorCode.E_INVALID_REQUEST: 400,
    ApiErrorCode.E_INTERNAL: 500,
}


class ApiError(Exception):
    """An error a route or dependency raises to produce a mapped error response."""

    def __init__(self, code: ApiErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS[code]


class UnauthenticatedError(ApiError):
    """The request reached a Secured route without a verified principal."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(ApiErrorCode.E_UNAUTHENTICATED, message)
