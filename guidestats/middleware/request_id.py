"""Request and execution IDs for log tracing.

Every HTTP request gets an id: the caller's X-Request-ID when it is a sane
token, otherwise a fresh one. It lives in ``request_id_var`` for the
request's task and is echoed back on the response.

A scrape runs in its own task that may serve several requests at once (see
``InFlightRegistry``). That task carries ``execution_id_var``: the request id
of the caller that started it. Log lines from the scrape therefore name the
owning request, and each joining request logs which owner it attached to.
"""

import contextvars
import re
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

# Incoming ids end up in every log line, so only short plain tokens are kept
_VALID_REQUEST_ID = re.compile(r"[A-Za-z0-9._:-]{1,64}")

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "request_id", default=""
)
execution_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "execution_id", default=""
)


def new_request_id() -> str:
    return uuid.uuid4().hex


def accept_request_id(header_value: str | None) -> str:
    """The caller's id if it is usable, otherwise a generated one."""
    if header_value and _VALID_REQUEST_ID.fullmatch(header_value):
        return header_value
    return new_request_id()


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        rid = accept_request_id(request.headers.get(REQUEST_ID_HEADER))
        token = request_id_var.set(rid)
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = rid
            return response
        finally:
            request_id_var.reset(token)


def get_request_id() -> str:
    """Current request ID, or "-" outside a request (CLI, idle timer)."""
    return request_id_var.get() or "-"


def get_execution_id() -> str:
    """Request ID that owns the running scrape, or "-" outside one."""
    return execution_id_var.get() or "-"
