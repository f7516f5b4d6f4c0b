"""Error normalization and handlers.

Every error leaves the service in the shape the mobile client reads:
``{"error": <message>, "code": <code>, "request_id": <id>}``.
"""

import logging
from typing import Optional
from uuid import uuid4

from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import Request

from coachpay.core.logging import get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class WebhookVerificationError(AppError):
    code = "webhook_verification_failed"
    status_code = 400


class UpstreamError(AppError):
    """Payment service or document store failure."""
    code = "upstream_error"
    status_code = 500


class UpstreamTimeoutError(UpstreamError):
    """Upstream did not answer in time; safe to retry."""
    code = "upstream_timeout"
    status_code = 504


class WebhookProcessingError(AppError):
    code = "webhook_processing_failed"
    status_code = 500


class WebhookInFlightError(AppError):
    """Another delivery of the event is still being processed; Stripe retries."""
    code = "webhook_in_flight"
    status_code = 409


_HTTP_MESSAGES = {
    404: "Not found",
    405: "Method not allowed",
}


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(code: str, message: str, request_id: str) -> dict:
    return {"error": message, "code": code, "request_id": request_id}


def _respond(status_code: int, code: str, message: str, rid: str) -> JSONResponse:
    response = JSONResponse(status_code=status_code, content=_error_payload(code, message, rid))
    response.headers["x-request-id"] = rid
    return response


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    logger = logging.getLogger("coachpay")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    return _respond(exc.status_code, exc.code, exc.message, rid)


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    rid = _extract_request_id(request)
    if exc.status_code == 404:
        code = "not_found"
    elif exc.status_code == 405:
        code = "method_not_allowed"
    else:
        code = "http_error"
    message = _HTTP_MESSAGES.get(exc.status_code) or (exc.detail if isinstance(exc.detail, str) else "HTTP error")
    logger = logging.getLogger("coachpay")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    return _respond(exc.status_code, code, message, rid)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    rid = _extract_request_id(request)
    logger = logging.getLogger("coachpay")
    logger.warning("request.invalid", extra={"request_id": rid, "error_code": "validation_error", "status": 400})
    return _respond(400, "validation_error", "Invalid request body", rid)


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("coachpay")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    return _respond(500, "internal_error", "Unexpected error", rid)
