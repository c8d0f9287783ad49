"""
Custom middleware for the FastAPI application.
"""
import re
import time
import uuid
import logging
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

# Set up logging
logger = logging.getLogger(__name__)

QUIET_PATHS = {"/health"}
_SESSION_PATH = re.compile(r"/sessions/([0-9a-f]{32})")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs every request with a request id, the registration session and the duration.

    An X-Request-ID sent by the caller is reused so front-end and backend logs
    can be correlated.
    """
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id
        session = _SESSION_PATH.search(request.url.path)
        label = f"{request.method} {request.url.path}"
        if session:
            label += f" [session {session.group(1)[:8]}]"
        level = logging.DEBUG if request.url.path in QUIET_PATHS else logging.INFO

        logger.log(level, f"Request {request_id} started: {label}")
        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Request {request_id} failed: {label} - Error: {str(e)} "
                f"- Duration: {time.perf_counter() - start_time:.4f}s"
            )
            raise

        process_time = time.perf_counter() - start_time
        response.headers["X-Process-Time"] = f"{process_time:.4f}"
        response.headers["X-Request-ID"] = request_id
        logger.log(level, f"Request {request_id} completed: {label} - Status: {response.status_code} - Duration: {process_time:.4f}s")
        return response


def setup_middlewares(app):
    """
    Set up all custom middlewares for the application.

    Args:
        app: FastAPI application instance
    """
    app.add_middleware(RequestLoggingMiddleware)
