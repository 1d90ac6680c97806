"""X-Request-ID middleware for request correlation.

Every response, auth rejections included, carries X-Request-ID. An incoming
value is kept when it is a UUID (lowercased) or a short token of
[A-Za-z0-9._-]; otherwise a UUID4 is generated. The ID is bound into log
context for the duration of the request and echoed in error bodies.

Must be registered after AuthMiddleware so it runs outermost.
"""

import re
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from tokengate.logging import clear_request_context, get_logger, set_request_context, set_subject

REQUEST_ID_HEADER = "X-Request-ID"

_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,128}$")
_UUID_PATTERN = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)

logger = get_logger(__name__)


def resolve_request_id(incoming: str | None) -> str:
    """Return the normalized incoming ID, or a fresh UUID4 if it is absent or invalid."""
    if incoming:
        if _UUID_PATTERN.match(incoming):
            return incoming.lower()
        if _TOKEN_PATTERN.match(incoming):
            return incoming
    return str(uuid.uuid4())


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns a request ID, binds log context, and emits one access log per request."""

    def __init__(self, app, log_requests: bool = True):
        super().__init__(app)
        self.log_requests = log_requests

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start_time = time.monotonic()

        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        set_request_context(request_id, path=request.url.path, method=request.method)

        try:
            response = await call_next(request)

            # Context set inside AuthMiddleware does not flow back out here
            principal = getattr(request.state, "principal", None)
            if principal is not None:
                set_subject(principal.subject)

            response.headers[REQUEST_ID_HEADER] = request_id

            if self.log_requests:
                logger.info(
                    "request_completed",
                    status_code=response.status_code,
                    duration_ms=round((time.monotonic() - start_time) * 1000, 2),
                )

            return response

        except Exception:
            logger.exception("request_failed")
            raise

        finally:
            clear_request_context()
