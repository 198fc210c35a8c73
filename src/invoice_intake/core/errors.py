from __future__ import annotations

import asyncio
import enum
import json
from typing import Any

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from invoice_intake.core.logging import get_logger, log_event

logger = get_logger(__name__)


class ErrorCode(str, enum.Enum):
    UPLOAD_INVALID = "UPLOAD_INVALID"
    OCR_FAIL = "OCR_FAIL"
    AI_TIMEOUT = "AI_TIMEOUT"
    PARSE_FAIL = "PARSE_FAIL"
    USAGE_LIMIT = "USAGE_LIMIT"
    AUTH_REQUIRED = "AUTH_REQUIRED"
    PLAN_REQUIRED = "PLAN_REQUIRED"
    HISTORY_NOT_FOUND = "HISTORY_NOT_FOUND"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    SESSION_CONFLICT = "SESSION_CONFLICT"


DEFAULT_STATUS: dict[ErrorCode, int] = {
    ErrorCode.UPLOAD_INVALID: 400,
    ErrorCode.OCR_FAIL: 500,
    ErrorCode.AI_TIMEOUT: 504,
    ErrorCode.PARSE_FAIL: 422,
    ErrorCode.USAGE_LIMIT: 429,
    ErrorCode.AUTH_REQUIRED: 401,
    ErrorCode.PLAN_REQUIRED: 403,
    ErrorCode.HISTORY_NOT_FOUND: 404,
    ErrorCode.SESSION_NOT_FOUND: 404,
    ErrorCode.SESSION_CONFLICT: 409,
}


class AppError(Exception):
    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code or DEFAULT_STATUS[code]
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        return {"code": self.code.value, "message": self.message, "details": self.details}


class UpstreamStatusError(Exception):
    """Non-2xx answer from the inference service."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code


def is_transient(error: BaseException) -> bool:
    if isinstance(error, AppError):
        return error.code == ErrorCode.AI_TIMEOUT
    if isinstance(error, UpstreamStatusError):
        return error.status_code == 429 or error.status_code >= 500
    return isinstance(error, (httpx.TimeoutException, httpx.TransportError))


def to_app_error(error: BaseException, fallback: ErrorCode, fallback_status: int = 500) -> AppError:
    if isinstance(error, AppError):
        return error
    if isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException)):
        return AppError(ErrorCode.AI_TIMEOUT, "AI request timed out.", 504)
    if isinstance(error, UpstreamStatusError):
        status = error.status_code
        if status == 400 and "file_data" in str(error).lower():
            return AppError(ErrorCode.UPLOAD_INVALID, "Invalid document payload.", 400)
        if status == 413:
            return AppError(ErrorCode.UPLOAD_INVALID, "File is too large.", 413)
        if status == 429 or status >= 500:
            return AppError(ErrorCode.AI_TIMEOUT, "AI service is unavailable.", 503)
    if isinstance(error, httpx.TransportError):
        return AppError(ErrorCode.AI_TIMEOUT, "AI service is unavailable.", 503)
    if isinstance(error, (json.JSONDecodeError, ValidationError)):
        return AppError(ErrorCode.PARSE_FAIL, "Failed to parse AI response.", 422)
    return AppError(fallback, str(error) or "Unexpected error", fallback_status)


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        log_event(
            logger,
            "http.app_error",
            method=request.method,
            path=request.url.path,
            code=exc.code.value,
            status_code=exc.status_code,
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        error = AppError(
            ErrorCode.UPLOAD_INVALID,
            "Invalid request body.",
            400,
            json.loads(json.dumps(exc.errors(), default=str)),
        )
        return JSONResponse(status_code=error.status_code, content=error.to_payload())
