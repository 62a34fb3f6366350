"""
Error responses for the live transit API.

Every error leaves the service as

    {"error": {"code", "message", "details", "request_id", "timestamp"}}

with an ``X-Request-ID`` header, whether it was raised by a handler,
by request validation, or escaped as an unhandled exception.
"""

import dataclasses
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from utils.upstream import RateLimitedError

logger = logging.getLogger(__name__)


class ErrorCode:
    """Error codes and the HTTP status each maps to."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_COORDINATES = "INVALID_COORDINATES"
    INVALID_ID_FORMAT = "INVALID_ID_FORMAT"
    INVALID_SEARCH_QUERY = "INVALID_SEARCH_QUERY"

    SYSTEM_ERROR = "SYSTEM_ERROR"

    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    UPSTREAM_RATE_LIMITED = "UPSTREAM_RATE_LIMITED"

    STATUS = {
        VALIDATION_ERROR: 400,
        INVALID_COORDINATES: 400,
        INVALID_ID_FORMAT: 400,
        INVALID_SEARCH_QUERY: 400,
        SYSTEM_ERROR: 500,
        UPSTREAM_ERROR: 503,
        UPSTREAM_RATE_LIMITED: 503,
    }

    @classmethod
    def status_for(cls, code: str) -> int:
        return cls.STATUS.get(code, 500)


@dataclass
class ErrorDetail:
    field: Optional[str] = None
    value: Optional[str] = None
    constraint: Optional[str] = None
    extra: Dict[str, Any] = dataclasses.field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            key: value for key, value in
            (("field", self.field), ("value", self.value), ("constraint", self.constraint))
            if value is not None
        }
        result.update(self.extra)
        return result


@dataclass
class ApiError:
    code: str
    message: str
    details: Union[ErrorDetail, List[ErrorDetail], None] = None
    request_id: str = dataclasses.field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = dataclasses.field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def status_code(self) -> int:
        return ErrorCode.status_for(self.code)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "request_id": self.request_id,
            "timestamp": self.timestamp,
        }
        if isinstance(self.details, list):
            body["details"] = [detail.to_dict() for detail in self.details]
        elif self.details is not None:
            body["details"] = self.details.to_dict()
        return {"error": body}

    def raise_http(self, headers: Optional[Dict[str, str]] = None):
        raise HTTPException(status_code=self.status_code, detail=self.to_dict(), headers=headers)


def upstream_error(source: str, rate_limited: bool = False, debug_info: Optional[str] = None) -> ApiError:
    """Error for a journey planner or feed that failed after retries."""
    extra = {
        "source": source,
        "guidance": "The upstream is struggling or waking up. Retry in a minute.",
    }
    if debug_info:
        extra["debug_info"] = debug_info

    if rate_limited:
        return ApiError(ErrorCode.UPSTREAM_RATE_LIMITED, f"{source} is rate limiting requests, try again shortly",
                        ErrorDetail(extra=extra))
    return ApiError(ErrorCode.UPSTREAM_ERROR, f"{source} is unavailable, try again shortly", ErrorDetail(extra=extra))


def system_error(component: str, request_id: Optional[str] = None, debug_info: Optional[str] = None) -> ApiError:
    extra = {"component": component}
    if debug_info:
        extra["debug_info"] = debug_info
    error = ApiError(ErrorCode.SYSTEM_ERROR, f"System error in {component}", ErrorDetail(extra=extra))
    if request_id:
        error.request_id = request_id
    return error


def from_validation_errors(errors: List[Dict[str, Any]], request_id: str) -> ApiError:
    """Convert pydantic/FastAPI validation errors into one ApiError."""
    details = [
        ErrorDetail(
            field=".".join(str(part) for part in error.get("loc", ())),
            value=str(error.get("input", "")),
            constraint=error.get("msg"),
        )
        for error in errors
    ]
    if len(details) == 1:
        message = details[0].constraint or "Invalid request"
        return ApiError(ErrorCode.VALIDATION_ERROR, message, details[0], request_id=request_id)
    return ApiError(ErrorCode.VALIDATION_ERROR, f"Multiple validation errors ({len(details)} errors)",
                    details, request_id=request_id)


class ErrorHandler:
    """Raises standardized HTTP errors from request handlers."""

    def __init__(self, include_debug_info: bool = False):
        self.include_debug_info = include_debug_info

    def handle_validation_error(self, field: str, value: Any, constraint: str,
                                code: str = ErrorCode.VALIDATION_ERROR):
        ApiError(code, f"Invalid value for {field}",
                 ErrorDetail(field=field, value=str(value), constraint=constraint)).raise_http()

    def handle_upstream_error(self, source: str, original_error: Exception):
        """Raise 503; rate limiting adds a Retry-After header."""
        logger.warning(f"Upstream error from {source}: {original_error}")
        rate_limited = isinstance(original_error, RateLimitedError)
        error = upstream_error(source, rate_limited, str(original_error) if self.include_debug_info else None)
        error.raise_http({"Retry-After": "60"} if rate_limited else None)

    def handle_system_error(self, component: str, original_error: Exception):
        logger.error(f"System error in {component}: {original_error}", exc_info=True)
        system_error(component, debug_info=str(original_error) if self.include_debug_info else None).raise_http()


error_handler = ErrorHandler()


def get_request_id(request: Request) -> str:
    return request.headers.get("X-Request-ID") or str(uuid.uuid4())


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = get_request_id(request)
    logger.error(f"Unhandled exception for request {request_id}: {exc}", exc_info=True)

    error = system_error("request handling", request_id=request_id)
    return JSONResponse(status_code=500, content=error.to_dict(), headers={"X-Request-ID": request_id})


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Pass standardized details through; wrap plain ones."""
    request_id = get_request_id(request)
    headers = {**(exc.headers or {}), "X-Request-ID": request_id}

    if isinstance(exc.detail, dict) and "error" in exc.detail:
        exc.detail["error"]["request_id"] = request_id
        return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=headers)

    code = ErrorCode.SYSTEM_ERROR if exc.status_code >= 500 else ErrorCode.VALIDATION_ERROR
    error = ApiError(code, str(exc.detail), request_id=request_id)
    return JSONResponse(status_code=exc.status_code, content=error.to_dict(), headers=headers)


async def validation_exception_handler(request: Request, exc: Union[ValidationError, Exception]) -> JSONResponse:
    """Request and model validation failures become 400."""
    request_id = get_request_id(request)
    error = from_validation_errors(exc.errors(), request_id)
    return JSONResponse(status_code=400, content=error.to_dict(), headers={"X-Request-ID": request_id})
