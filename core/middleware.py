# core/middleware.py

"""
CUSTOM MIDDLEWARE

Request/response processing middleware for:
- Request logging and tracing
- Security headers
- Error handling
"""

import time
import uuid
import logging
from django.utils.deprecation import MiddlewareMixin
from django.http import JsonResponse

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(MiddlewareMixin):
    """
    Log all incoming requests with timing information.

    Reuses an upstream X-Request-ID when present, otherwise generates one.
    """

    SLOW_REQUEST_MS = 1000

    def process_request(self, request):
        request.request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]
        request.start_time = time.time()

        user = getattr(request, "user", None)
        logger.info(
            f"[{request.request_id}] {request.method} {request.path} "
            f"- User: {getattr(user, 'id', None) or 'anonymous'}"
        )

    def process_response(self, request, response):
        if hasattr(request, "start_time"):
            duration_ms = (time.time() - request.start_time) * 1000

            response["X-Request-Duration-Ms"] = f"{duration_ms:.2f}"

            logger.info(
                f"[{getattr(request, 'request_id', 'unknown')}] "
                f"Response: {response.status_code} ({duration_ms:.2f}ms)"
            )

            if duration_ms > self.SLOW_REQUEST_MS:
                logger.warning(
                    f"Slow request: {request.method} {request.path} "
                    f"took {duration_ms:.2f}ms"
                )

        if hasattr(request, "request_id"):
            response["X-Request-ID"] = request.request_id

        return response


class SecurityHeadersMiddleware(MiddlewareMixin):
    """
    Add security headers to all responses.
    """

    def process_response(self, request, response):
        # Prevent clickjacking
        response["X-Frame-Options"] = "DENY"

        # Prevent MIME type sniffing
        response["X-Content-Type-Options"] = "nosniff"

        # Referrer policy
        response["Referrer-Policy"] = "strict-origin-when-cross-origin"

        # Codes and account data must never be cached
        if request.path.startswith("/api/auth/"):
            response["Cache-Control"] = "no-store"

        return response


class ExceptionHandlerMiddleware(MiddlewareMixin):
    """
    Global exception handler for unhandled errors.

    Store timeouts and connectivity failures end up here: the request
    fails closed with a JSON 500.
    """

    def process_exception(self, request, exception):
        logger.exception(
            f"Unhandled exception in {request.method} {request.path}: {exception}"
        )

        return JsonResponse(
            {
                "success": False,
                "error_code": "server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": getattr(request, "request_id", None),
            },
            status=500
        )
