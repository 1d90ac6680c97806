"""Application factory.

create_app wires error handlers, routes and AuthMiddleware around one
JwksTokenVerifier; build_app adds logging and the outermost request-id layer
for the uvicorn entrypoint.

Starlette runs middleware in reverse order of registration, so
add_request_id_middleware must be called after create_app. That way a 401
from AuthMiddleware still leaves with an X-Request-ID header and a request_id
in its body.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from tokengate.api.routes import create_api_router
from tokengate.auth.middleware import AuthMiddleware
from tokengate.auth.verifier import (
    TokenVerifier,
    clear_token_verifier_cache,
    get_token_verifier,
    is_process_verifier,
)
from tokengate.config import get_settings
from tokengate.errors import ApiError, ApiErrorCode
from tokengate.logging import configure_logging, get_logger
from tokengate.middleware.request_id import RequestIDMiddleware
from tokengate.responses import (
    api_error_handler,
    error_response,
    http_exception_handler,
    unhandled_exception_handler,
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Release the verifier's HTTP resources on shutdown."""
    yield

    verifier = getattr(app.state, "token_verifier", None)
    if is_process_verifier(verifier):
        clear_token_verifier_cache()
        logger.info("token_verifier_closed")
        return

    close = getattr(verifier, "close", None)
    if close is not None:
        close()
        logger.info("token_verifier_closed")


def create_app(
    skip_auth_middleware: bool = False,
    token_verifier: TokenVerifier | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        skip_auth_middleware: If True, skip adding auth middleware (for testing).
        token_verifier: Optional custom token verifier (for testing). When
            omitted, the process-wide verifier from settings is used.

    Returns:
        Configured FastAPI application instance.
    """
    app = FastAPI(
        title="tokengate",
        description="Bearer token gate backed by an identity provider's JWKS",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle request validation errors."""
        return JSONResponse(
            status_code=400,
            content=error_response(ApiErrorCode.E_INVALID_REQUEST, "Invalid request"),
        )

    app.include_router(create_api_router())

    if not skip_auth_middleware:
        verifier = token_verifier or get_token_verifier()
        app.state.token_verifier = verifier
        app.add_middleware(AuthMiddleware, verifier=verifier)
        logger.info("auth_middleware_enabled")

    return app


def add_request_id_middleware(app: FastAPI, log_requests: bool = True) -> None:
    """Add request-id middleware to the app.

    This should be called AFTER all other middleware is added, so it runs FIRST.
    This ensures every response includes X-Request-ID, including auth failures.

    Args:
        app: The FastAPI application.
        log_requests: Whether to log access entries for each request.
    """
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)


def build_app() -> FastAPI:
    """Build the production application: logging, auth, then request-id middleware."""
    settings = get_settings()
    configure_logging(json_format=settings.log_json)

    app = create_app()
    add_request_id_middleware(app)
    return app
