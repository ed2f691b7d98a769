"""
Request context middleware.

- Reads X-Trace-ID / X-Request-ID (or generates a trace id)
- Reads X-User-ID / X-Session-ID when the caller supplies them
- Sets the logging context vars for the duration of the request
- Records RED metrics and echoes X-Trace-ID / X-Request-ID on the response
"""
import time
from typing import Callable

from fastapi import HTTPException, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .logging import (
    clear_request_context,
    generate_request_id,
    generate_trace_id,
    get_logger,
    set_request_id,
    set_session_id,
    set_trace_id,
    set_user_id,
)
from .metrics import record_http_request
from .tracing import set_span_attribute

logger = get_logger(__name__)


class TraceIDMiddleware(BaseHTTPMiddleware):
    """Bind trace/request/user/session ids to every log entry of a request."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id = (
            request.headers.get("X-Trace-ID")
            or request.headers.get("X-Request-ID")
            or generate_trace_id()
        )
        request_id = generate_request_id()
        user_id = request.headers.get("X-User-ID")
        session_id = request.headers.get("X-Session-ID")

        set_trace_id(trace_id)
        set_request_id(request_id)
        if user_id:
            set_user_id(user_id)
            set_span_attribute("user.id", user_id)
        if session_id:
            set_session_id(session_id)

        start_time = time.time()
        request.state.start_time = start_time
        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            client_host=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
        except HTTPException:
            # Exception handlers record these.
            raise
        except Exception as e:
            process_time = time.time() - start_time
            record_http_request(
                method=request.method,
                endpoint=request.url.path,
                status_code=500,
                duration_seconds=process_time,
            )
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                error_type=type(e).__name__,
                latency_ms=int(process_time * 1000),
                exc_info=True,
            )
            raise
        else:
            process_time = time.time() - start_time
            record_http_request(
                method=request.method,
                endpoint=request.url.path,
                status_code=response.status_code,
                duration_seconds=process_time,
            )
            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                latency_ms=int(process_time * 1000),
            )
            response.headers["X-Trace-ID"] = trace_id
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            clear_request_context()
