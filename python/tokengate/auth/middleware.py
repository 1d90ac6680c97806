"""Authentication middleware for FastAPI.

Provides:
- AuthMiddleware: Global middleware enforcing bearer token verification
- Principal: Verified identity attached to request state
- get_principal / Secured: Route dependency for accessing the principal
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from fastapi import Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from tokengate.auth.errors import TokenVerificationError
from tokengate.auth.verifier import TokenVerifier
from tokengate.errors import ApiErrorCode, UnauthenticatedError
from tokengate.logging import get_logger, set_subject
from tokengate.responses import error_json_response

logger = get_logger(__name__)

AUTHORIZATION_HEADER = "authorization"
BEARER_PREFIX = "bearer "

# Paths that don't require authentication
PUBLIC_PATHS = frozenset({"/health", "/api/public", "/docs", "/redoc", "/openapi.json"})


@dataclass(frozen=True)
class Principal:
    """Identity established from a verified bearer token.

    Attributes:
        subject: The token's sub claim, if any.
        claims: All verified claims.
    """

    subject: str | None
    claims: dict[str, Any] = field(default_factory=dict)


class AuthMiddleware(BaseHTTPMiddleware):
    """Authentication middleware for FastAPI.

    Order of checks:
    1. Skip if public path
    2. Extract bearer token from the Authorization header
    3. Verify token via TokenVerifier (in the threadpool, it may fetch JWKS)
    4. Attach Principal to request state

    Any failure short-circuits with 401 and a body naming only the failure
    category. Verification details go to the log.
    """

    def __init__(
        self,
        app: ASGIApp,
        verifier: TokenVerifier,
        public_paths: Iterable[str] = PUBLIC_PATHS,
    ):
        """Initialize the auth middleware.

        Args:
            app: The ASGI application.
            verifier: TokenVerifier implementation for JWT verification.
            public_paths: Exact paths served without authentication.
        """
        super().__init__(app)
        self.verifier = verifier
        self.public_paths = frozenset(public_paths)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Process the request through auth checks."""
        if request.url.path in self.public_paths:
            return await call_next(request)

        token = self._extract_bearer_token(request)
        if token is None:
            return self._unauthenticated("Authentication required")

        try:
            claims = await run_in_threadpool(self.verifier.verify, token)
        except TokenVerificationError as e:
            logger.warning(
                "auth_rejected",
                reason=e.reason,
                error_type=type(e).__name__,
                request_path=request.url.path,
            )
            return self._unauthenticated(e.message)

        subject = claims.get("sub")
        request.state.principal = Principal(
            subject=subject if isinstance(subject, str) else None,
            claims=claims,
        )
        set_subject(request.state.principal.subject)

        return await call_next(request)

    def _extract_bearer_token(self, request: Request) -> str | None:
        """Extract the bearer token from the Authorization header.

        Returns:
            The token, or None if the header is missing, uses another scheme,
            or carries an empty token.
        """
        auth_header = request.headers.get(AUTHORIZATION_HEADER)

        if not auth_header:
            logger.warning("auth_failure", reason="missing_header", request_path=request.url.path)
            return None

        if not auth_header.lower().startswith(BEARER_PREFIX):
            logger.warning(
                "auth_failure", reason="invalid_header_format", request_path=request.url.path
            )
            return None

        token = auth_header[len(BEARER_PREFIX) :].strip()
        if not token:
            logger.warning(
                "auth_failure", reason="invalid_header_format", request_path=request.url.path
            )
            return None

        return token

    def _unauthenticated(self, message: str) -> JSONResponse:
        return error_json_response(
            ApiErrorCode.E_UNAUTHENTICATED, message, headers={"WWW-Authenticate": "Bearer"}
        )


def get_principal(request: Request) -> Principal:
    """FastAPI dependency to get the verified principal.

    Args:
        request: The FastAPI request object.

    Returns:
        The Principal attached by AuthMiddleware.

    Raises:
        UnauthenticatedError: If no principal is set (middleware didn't run
            or path is public).
    """
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise UnauthenticatedError()
    return principal


# Guards a route: the handler only runs for verified requests
Secured = Depends(get_principal)
