"""
Request / run context.

Generates or propagates X-Request-ID headers and stores the request id in a
ContextVar. Pipeline executions set a run id the same way, so every log line
emitted while a run is executing can be tied back to it.
"""

import time
import logging
from contextvars import ContextVar
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)

_request_id_var: ContextVar[str] = ContextVar("request_id", default="")
_run_id_var: ContextVar[str] = ContextVar("run_id", default="")


def get_request_id() -> str:
    """Get the current request ID from context."""
    return _request_id_var.get()


def get_run_id() -> str:
    """Get the pipeline run ID being executed in this context, if any."""
    return _run_id_var.get()


def bind_run_id(run_id: str):
    """Set the run id for the current task; returns a token for reset_run_id."""
    return _run_id_var.set(run_id)


def reset_run_id(token) -> None:
    _run_id_var.reset(token)


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid4().hex
        token = _request_id_var.set(request_id)

        start_time = time.time()
        try:
            response = await call_next(request)
        finally:
            duration_ms = round((time.time() - start_time) * 1000, 2)
            _request_id_var.reset(token)

        response.headers["X-Request-ID"] = request_id

        logger.info(
            "%s %s %s %.0fms",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra={"duration_ms": duration_ms},
        )

        return response
