"""structlog setup and request-scoped log context.

Each log line carries whatever of these is known for the current request:
request_id, subject (the verified token's `sub`), path and method. Values
live in ContextVars so they follow the request through threadpool hops.

Token material never goes into the context. Only the subject claim of a
token that already passed verification is bound.
"""

import logging
import sys
from contextvars import ContextVar

import structlog

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
subject_var: ContextVar[str | None] = ContextVar("subject", default=None)
path_var: ContextVar[str | None] = ContextVar("path", default=None)
method_var: ContextVar[str | None] = ContextVar("method", default=None)

_CONTEXT_VARS = {
    "request_id": request_id_var,
    "subject": subject_var,
    "path": path_var,
    "method": method_var,
}

_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def add_request_context(logger: logging.Logger, method_name: str, event_dict: dict) -> dict:
    """structlog processor: copy bound request fields into the event.

    Fields passed explicitly on the log call take precedence.
    """
    for key, var in _CONTEXT_VARS.items():
        value = var.get()
        if value:
            event_dict.setdefault(key, value)
    return event_dict


def _pre_chain() -> list:
    return [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_request_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def configure_logging(json_format: bool = True, level: int = logging.INFO) -> None:
    """Route structlog and stdlib logging through one stdout handler.

    Args:
        json_format: Render JSON lines when True, the console renderer otherwise.
        level: Root log level.
    """
    structlog.configure(
        processors=[*_pre_chain(), structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.processors.JSONRenderer() if json_format else structlog.dev.ConsoleRenderer()
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_pre_chain(),
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def set_request_context(
    request_id: str | None,
    path: str | None = None,
    method: str | None = None,
) -> None:
    """Bind the correlation ID, and optionally path and method, for this request."""
    request_id_var.set(request_id)
    if path is not None:
        path_var.set(path)
    if method is not None:
        method_var.set(method)


def set_subject(subject: str | None) -> None:
    """Bind the verified token subject to subsequent log entries."""
    subject_var.set(subject)


def clear_request_context() -> None:
    for var in _CONTEXT_VARS.values():
        var.set(None)


def get_request_id() -> str | None:
    return request_id_var.get()
