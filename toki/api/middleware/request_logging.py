"""Request logging middleware that tags each IPC request with a correlation id."""

import time
import uuid
from collections.abc import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from toki.core.logging import (
    clear_correlation_id,
    get_logger,
    log_error,
    set_correlation_id,
)

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs IPC requests at debug level and echoes the request id back."""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        set_correlation_id(request_id)
        method = request.method
        path = request.url.path
        start_time = time.monotonic()

        try:
            response = await call_next(request)
            logger.debug(
                f"IPC request: {method} {path} - {response.status_code}",
                extra={
                    "event_type": "ipc_request",
                    "method": method,
                    "path": path,
                    "status_code": response.status_code,
                    "duration_ms": round((time.monotonic() - start_time) * 1000, 2),
                },
            )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        except Exception as e:
            log_error(
                logger,
                f"IPC request failed: {method} {path}",
                error=e,
                extra={"method": method, "path": path},
            )
            raise
        finally:
            clear_correlation_id()
