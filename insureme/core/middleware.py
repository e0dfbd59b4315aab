"""
HTTP middleware and exception handlers

Request path through the stack (outermost first):

    SecurityHeaders -> CorrelationId -> RequestLogging -> CallbackRateLimit -> routes

Phone numbers are masked before anything about the request is logged. Error
bodies share one shape: ``{"error": {"code", "message", "details"}}``.
"""
import re
import time
import traceback
from collections import defaultdict
from typing import Any, Callable

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from insureme.core.config import settings
from insureme.core.exceptions import AppException, ErrorCode
from insureme.core.logging import get_correlation_id, get_logger, set_correlation_id

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"
# Some gateways send their own request id; reuse it when no correlation id is given
GATEWAY_REQUEST_HEADER = "X-Request-ID"

# 07..., 2547..., +2547... anywhere in a path or query value
_PHONE_RE = re.compile(r"(\+?254|0)([789]\d{2})\d{4}(\d{2})")

# Endpoints called by the USSD gateway and by Safaricom
RATE_LIMITED_PATHS = ("/ussd/callback", "/payments/mpesa/callback")


def mask_pii(value: str) -> str:
    """0712345678 -> 0712****78"""
    return _PHONE_RE.sub(r"\1\2****\3", value)


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _error_response(
    status_code: int,
    code: ErrorCode,
    message: str,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code.value, "message": message, "details": details or {}}},
        headers={CORRELATION_HEADER: get_correlation_id(), **(headers or {})},
    )


# ── Middleware ──

class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        incoming = (
            request.headers.get(CORRELATION_HEADER)
            or request.headers.get(GATEWAY_REQUEST_HEADER)
        )
        request.state.correlation_id = set_correlation_id(incoming)

        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = request.state.correlation_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One line when a request arrives, one when it leaves; 4xx/5xx at WARNING"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        route = f"{request.method} {mask_pii(request.url.path)}"
        started = time.perf_counter()

        logger.info(
            f"-> {route}",
            extra_data={
                "method": request.method,
                "path": mask_pii(request.url.path),
                "query_params": {k: mask_pii(v) for k, v in request.query_params.items()},
                "client_host": _client_ip(request),
            }
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"<- {route} raised {type(e).__name__}",
                extra_data={
                    "duration_seconds": round(time.perf_counter() - started, 4),
                    "error": str(e),
                },
                exc_info=True
            )
            raise

        log = logger.info if response.status_code < 400 else logger.warning
        log(
            f"<- {route} {response.status_code}",
            extra_data={
                "status_code": response.status_code,
                "duration_seconds": round(time.perf_counter() - started, 4),
            }
        )
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    ``nosniff`` always. HSTS and ``upgrade-insecure-requests`` only outside
    DEBUG, where the service sits behind TLS.
    """

    def __init__(self, app: FastAPI, *, debug: bool = False) -> None:
        super().__init__(app)
        self._headers = {"X-Content-Type-Options": "nosniff"}
        if not debug:
            self._headers["Content-Security-Policy"] = "upgrade-insecure-requests"
            self._headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        response.headers.update(self._headers)
        return response


class CallbackRateLimitMiddleware(BaseHTTPMiddleware):
    """
    Per-IP sliding window on the USSD and M-Pesa callbacks.

    Added inside CorrelationIdMiddleware, so a 429 still has a correlation ID.
    Counts live in process memory; each worker limits on its own.
    """

    def __init__(
        self,
        app: FastAPI,
        *,
        max_requests: int = 300,
        window_seconds: int = 60,
    ) -> None:
        super().__init__(app)
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._requests: dict[str, list[float]] = defaultdict(list)

    def _cleanup_window(self, ip: str, now: float) -> None:
        recent = [ts for ts in self._requests.get(ip, []) if ts >= now - self._window_seconds]
        if recent:
            self._requests[ip] = recent
        else:
            self._requests.pop(ip, None)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not request.url.path.endswith(RATE_LIMITED_PATHS):
            return await call_next(request)

        ip = _client_ip(request)
        now = time.time()
        self._cleanup_window(ip, now)

        if len(self._requests.get(ip, ())) >= self._max_requests:
            logger.warning(
                "Callback rate limit hit",
                extra_data={
                    "client_ip": ip,
                    "path": mask_pii(request.url.path),
                    "limit": self._max_requests,
                    "window_seconds": self._window_seconds,
                },
            )
            return _error_response(
                429,
                ErrorCode.RATE_LIMITED,
                "Too many requests. Please try again later.",
                headers={"Retry-After": str(self._window_seconds)},
            )

        self._requests[ip].append(now)
        return await call_next(request)


# ── Exception handlers ──

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    logger.warning(
        f"{exc.error_code.value}: {exc.message}",
        extra_data={
            "error_code": exc.error_code.value,
            "details": exc.details,
            "path": mask_pii(request.url.path),
        }
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers={CORRELATION_HEADER: get_correlation_id()},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """500 with a generic message; the traceback is returned only in DEBUG"""
    logger.error(
        f"Unhandled {type(exc).__name__}",
        extra_data={"message": str(exc), "path": mask_pii(request.url.path)},
        exc_info=True
    )

    details: dict[str, Any] = {}
    if settings.DEBUG:
        details = {
            "exception_type": type(exc).__name__,
            "traceback": traceback.format_exception(exc),
        }
    return _error_response(500, ErrorCode.INTERNAL_ERROR, "An unexpected error occurred", details)


# ── Wiring ──

def setup_middleware(app: FastAPI) -> None:
    # add_middleware wraps: the last one added runs first
    app.add_middleware(
        CallbackRateLimitMiddleware,
        max_requests=settings.WEBHOOK_RATE_LIMIT_MAX_REQUESTS,
        window_seconds=settings.WEBHOOK_RATE_LIMIT_WINDOW_SECONDS,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, debug=settings.DEBUG)


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
