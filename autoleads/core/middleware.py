"""
FastAPI Middleware

- Correlation ID: taken from the gateway (X-Correlation-ID, else X-Request-ID) or generated
- Request logging: one line per request, admin phone numbers in the path masked
- Exception handlers: AppException to its JSON body, anything else to a generic 500
"""
import re
import time
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from autoleads.core.exceptions import AppException, ErrorCode
from autoleads.core.logging import get_correlation_id, get_logger, set_correlation_id

logger = get_logger(__name__)

# phone-like runs of digits in a URL path
_PHONE_IN_PATH_RE = re.compile(r"(\+?\d{4})\d{4,}(\d{2})")
# ids we are willing to echo into logs and response headers
_SAFE_CORRELATION_ID = re.compile(r"^[A-Za-z0-9._-]{1,64}$")
_QUIET_PATHS = {"/health"}


def _mask_path_pii(path: str) -> str:
    return _PHONE_IN_PATH_RE.sub(r"\1****\2", path)


def _incoming_correlation_id(request: Request) -> str | None:
    for header in ("X-Correlation-ID", "X-Request-ID"):
        value = request.headers.get(header)
        if value and _SAFE_CORRELATION_ID.match(value):
            return value
    return None


class CorrelationIdMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = set_correlation_id(_incoming_correlation_id(request))
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request once it completes; health probes only at debug level"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.monotonic()
        safe_path = _mask_path_pii(request.url.path)

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"{request.method} {safe_path} raised",
                extra_data={
                    "method": request.method,
                    "path": safe_path,
                    "duration_seconds": round(time.monotonic() - started, 4),
                    "error": str(e),
                },
                exc_info=True
            )
            raise

        if request.url.path in _QUIET_PATHS and response.status_code < 400:
            log = logger.debug
        elif response.status_code < 400:
            log = logger.info
        else:
            log = logger.warning
        log(
            f"{request.method} {safe_path} -> {response.status_code}",
            extra_data={
                "method": request.method,
                "path": safe_path,
                "status_code": response.status_code,
                "duration_seconds": round(time.monotonic() - started, 4),
            }
        )
        return response


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"Application exception: {exc.error_code.value}",
        extra_data={
            "error_code": exc.error_code.value,
            "message": exc.message,
            "details": exc.details,
            "path": _mask_path_pii(request.url.path),
        }
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers={"X-Correlation-ID": get_correlation_id()}
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled exception: {type(exc).__name__}",
        extra_data={"message": str(exc), "path": _mask_path_pii(request.url.path)},
        exc_info=True
    )
    body = AppException("An unexpected error occurred", ErrorCode.INTERNAL_ERROR).to_dict()
    return JSONResponse(status_code=500, content=body, headers={"X-Correlation-ID": get_correlation_id()})


def setup_middleware(app: FastAPI) -> None:
    # added last is outermost: the correlation id is set before the request is logged
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
