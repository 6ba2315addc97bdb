"""
Request Audit Middleware
Request-ID propagation and access logging. Query strings are never logged:
the DigiLocker callback carries the authorization code and state in them.
"""
import re
import time
import uuid
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from loguru import logger

from bandhan_auth.config import settings

REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9\-]{8,64}$")


class AuditLogMiddleware(BaseHTTPMiddleware):
    """
    Tags every request with X-Request-ID and logs method, path, caller and timing
    """

    # Paths to exclude from access logging
    EXCLUDE_PATHS = {"/health", "/", "/docs", "/redoc", "/openapi.json"}

    # Verification and token routes are logged at info level regardless of AUDIT_LOG_ENABLED
    SENSITIVE_PREFIXES = ("/auth/", "/consent", "/location")

    async def dispatch(self, request: Request, call_next) -> Response:
        incoming = request.headers.get("X-Request-ID", "")
        request_id = incoming if REQUEST_ID_PATTERN.match(incoming) else str(uuid.uuid4())
        request.state.request_id = request_id

        path = request.url.path
        if path in self.EXCLUDE_PATHS:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response

        started = time.perf_counter()
        sensitive = path.startswith(self.SENSITIVE_PREFIXES)

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = int((time.perf_counter() - started) * 1000)
            logger.error(
                f"API Error: request_id={request_id} {request.method} {path} "
                f"error={type(e).__name__} duration_ms={duration_ms}"
            )
            raise

        duration_ms = int((time.perf_counter() - started) * 1000)
        line = (
            f"request_id={request_id} {request.method} {path} ip={self._get_client_ip(request)} "
            f"auth={'Authorization' in request.headers} status={response.status_code} "
            f"duration_ms={duration_ms}"
        )
        if sensitive:
            logger.info(f"Sensitive API Access: {line}")
        elif settings.AUDIT_LOG_ENABLED:
            logger.debug(f"API Request: {line}")

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms}ms"
        return response

    def _get_client_ip(self, request: Request) -> str:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        return request.client.host if request.client else "unknown"
