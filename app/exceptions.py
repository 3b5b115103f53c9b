"""
RFC 7807 Problem Details for the journey engine API.

Errors are rendered as ``application/problem+json``. Each ``ErrorCode``
carries its own default status and title, so raising code only says what
went wrong:

    raise NotFoundError("Enrollment", enrollment_id)
    raise EntryRejectedError(journey_id, customer_id, "cooldown")
    raise ValidationError("Journey is invalid", errors=issues, code=ErrorCode.INVALID_JOURNEY)

The problem body carries the trace id of the request (``X-Request-ID``),
so a failing webhook delivery can be found in the logs.

See: https://datatracker.ietf.org/doc/html/rfc7807
"""

import logging
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.clock import utcnow
from app.middleware.correlation import UNKNOWN, get_request_id

logger = logging.getLogger(__name__)

PROBLEM_TYPE_BASE = "https://journey-engine.dev/problems"
PROBLEM_MEDIA_TYPE = "application/problem+json"


class ErrorCode(str, Enum):
    """Machine-readable error codes."""

    VALIDATION_ERROR = "VAL_001"
    INVALID_JOURNEY = "VAL_002"
    INVALID_RULE = "VAL_003"

    NOT_FOUND = "RES_001"
    CONFLICT = "RES_003"

    BUSINESS_RULE_VIOLATION = "BIZ_001"
    ENTRY_REJECTED = "BIZ_002"
    JOURNEY_NOT_ACTIVE = "BIZ_003"

    INTERNAL_ERROR = "SRV_001"
    SERVICE_UNAVAILABLE = "SRV_002"

    @property
    def problem_type(self) -> str:
        return f"{PROBLEM_TYPE_BASE}/{self.value.lower().replace('_', '-')}"


# (default status, title) per code
_PROBLEMS: Dict[ErrorCode, tuple[int, str]] = {
    ErrorCode.VALIDATION_ERROR: (422, "Validation Error"),
    ErrorCode.INVALID_JOURNEY: (422, "Invalid Journey"),
    ErrorCode.INVALID_RULE: (422, "Invalid Trigger Rule"),
    ErrorCode.NOT_FOUND: (404, "Not Found"),
    ErrorCode.CONFLICT: (409, "Conflict"),
    ErrorCode.BUSINESS_RULE_VIOLATION: (400, "Bad Request"),
    ErrorCode.ENTRY_REJECTED: (409, "Entry Rejected"),
    ErrorCode.JOURNEY_NOT_ACTIVE: (400, "Journey Not Active"),
    ErrorCode.INTERNAL_ERROR: (500, "Internal Server Error"),
    ErrorCode.SERVICE_UNAVAILABLE: (503, "Service Unavailable"),
}

# Codes for plain HTTPExceptions raised by FastAPI/Starlette themselves
_STATUS_CODES: Dict[int, ErrorCode] = {
    400: ErrorCode.BUSINESS_RULE_VIOLATION,
    404: ErrorCode.NOT_FOUND,
    405: ErrorCode.BUSINESS_RULE_VIOLATION,
    409: ErrorCode.CONFLICT,
    422: ErrorCode.VALIDATION_ERROR,
    503: ErrorCode.SERVICE_UNAVAILABLE,
}


def _trace_id() -> str:
    request_id = get_request_id()
    return request_id if request_id != UNKNOWN else uuid.uuid4().hex[:12]


class ProblemDetail(BaseModel):
    """
    Problem response body.

    ``errors`` holds per-field or per-node issues, e.g. the validation
    issues of a journey that could not be activated.
    """

    type: str = Field(default="about:blank")
    title: str
    status: int
    detail: str
    instance: Optional[str] = None
    code: str
    timestamp: str
    trace_id: str
    errors: Optional[List[Dict[str, Any]]] = None

    @classmethod
    def build(
        cls,
        code: ErrorCode,
        detail: str,
        instance: Optional[str] = None,
        status: Optional[int] = None,
        title: Optional[str] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
        trace_id: Optional[str] = None,
    ) -> "ProblemDetail":
        default_status, default_title = _PROBLEMS[code]
        return cls(
            type=code.problem_type,
            title=title or default_title,
            status=status or default_status,
            detail=detail,
            instance=instance,
            code=code.value,
            timestamp=utcnow().isoformat() + "Z",
            trace_id=trace_id or _trace_id(),
            errors=errors,
        )

    def to_response(self, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
        return JSONResponse(
            status_code=self.status,
            content=self.model_dump(exclude_none=True),
            media_type=PROBLEM_MEDIA_TYPE,
            headers=headers,
        )


class JourneyEngineException(HTTPException):
    """Base class for errors rendered as problem details."""

    def __init__(
        self,
        code: ErrorCode,
        detail: str,
        status_code: Optional[int] = None,
        title: Optional[str] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.code = code
        self.title = title
        self.errors = errors
        self.trace_id = _trace_id()
        super().__init__(
            status_code=status_code or _PROBLEMS[code][0],
            detail=detail,
            headers=headers,
        )

    def to_problem_detail(self, instance: Optional[str] = None) -> ProblemDetail:
        return ProblemDetail.build(
            self.code,
            self.detail,
            instance=instance,
            status=self.status_code,
            title=self.title,
            errors=self.errors,
            trace_id=self.trace_id,
        )


class NotFoundError(JourneyEngineException):
    def __init__(self, resource: str, resource_id: str):
        super().__init__(ErrorCode.NOT_FOUND, f"{resource} with ID {resource_id} was not found")


class ValidationError(JourneyEngineException):
    def __init__(
        self,
        detail: str,
        errors: Optional[List[Dict[str, Any]]] = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(code, detail, status_code=422, errors=errors)


class ConflictError(JourneyEngineException):
    def __init__(self, detail: str, code: ErrorCode = ErrorCode.CONFLICT):
        super().__init__(code, detail, status_code=409)


class BusinessRuleError(JourneyEngineException):
    def __init__(self, detail: str, code: ErrorCode = ErrorCode.BUSINESS_RULE_VIOLATION):
        super().__init__(code, detail, status_code=400)


class EntryRejectedError(ConflictError):
    """A customer may not (re-)enter a journey right now; ``reason`` says why."""

    def __init__(self, journey_id: str, customer_id: str, reason: str):
        self.reason = reason
        super().__init__(
            f"Customer {customer_id} cannot enter journey {journey_id}: {reason}",
            code=ErrorCode.ENTRY_REJECTED,
        )


def create_exception_handlers(debug: bool = False):
    """
    Build the handlers registered in main.py.

    Keys: ``engine`` (JourneyEngineException), ``http`` (Starlette
    HTTPException), ``validation`` (RequestValidationError) and
    ``generic`` (anything else).
    """

    async def handle_engine_exception(request: Request, exc: JourneyEngineException) -> JSONResponse:
        logger.warning(f"{exc.code.value} {request.method} {request.url.path}: {exc.detail}")
        problem = exc.to_problem_detail(str(request.url.path))
        return problem.to_response(exc.headers)

    async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        code = _STATUS_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
        problem = ProblemDetail.build(
            code, str(exc.detail), instance=str(request.url.path), status=exc.status_code
        )
        return problem.to_response(getattr(exc, "headers", None))

    async def handle_validation_exception(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            }
            for error in exc.errors()
        ]
        problem = ProblemDetail.build(
            ErrorCode.VALIDATION_ERROR,
            "Request validation failed",
            instance=str(request.url.path),
            errors=errors,
        )
        return problem.to_response()

    async def handle_generic_exception(request: Request, exc: Exception) -> JSONResponse:
        problem = ProblemDetail.build(
            ErrorCode.INTERNAL_ERROR,
            str(exc) if debug else "An unexpected error occurred",
            instance=str(request.url.path),
        )
        logger.error(
            f"Unhandled {type(exc).__name__} on {request.method} {request.url.path} "
            f"(trace {problem.trace_id})",
            exc_info=exc,
        )
        return problem.to_response()

    return {
        "engine": handle_engine_exception,
        "http": handle_http_exception,
        "validation": handle_validation_exception,
        "generic": handle_generic_exception,
    }
