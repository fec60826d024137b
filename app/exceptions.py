"""
RFC 7807 problem responses for the feedback engine.

Read-path errors (ValidationError, AggregationError, NotFoundError) reach the
API caller as application/problem+json. Dispatch-path errors
(ExternalProviderError, MissingCredentialsError) are raised per delivery
attempt and caught by NotificationDispatcher; a survey submitter never sees
them.

See: https://datatracker.ietf.org/doc/html/rfc7807
"""

import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.middleware.correlation import get_request_id

logger = logging.getLogger(__name__)

PROBLEM_BASE_URL = "https://api.happymeter.app/problems"
PROBLEM_MEDIA_TYPE = "application/problem+json"

STATUS_TITLES = {
    400: "Bad Request",
    404: "Not Found",
    409: "Conflict",
    422: "Validation Error",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
}


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    AGGREGATION_ERROR = "AGGREGATION_ERROR"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    WHATSAPP_ERROR = "WHATSAPP_ERROR"
    EMAIL_ERROR = "EMAIL_ERROR"
    MISSING_CREDENTIALS = "MISSING_CREDENTIALS"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


# Plain HTTPExceptions (e.g. FastAPI's own 404 for unknown routes)
STATUS_CODES = {
    400: ErrorCode.VALIDATION_ERROR,
    404: ErrorCode.NOT_FOUND,
    409: ErrorCode.CONFLICT,
    422: ErrorCode.VALIDATION_ERROR,
    502: ErrorCode.EXTERNAL_SERVICE_ERROR,
    503: ErrorCode.SERVICE_UNAVAILABLE,
}


def _trace_id() -> str:
    request_id = get_request_id()
    if request_id != "unknown":
        return request_id
    return uuid.uuid4().hex[:12]


class ProblemDetail(BaseModel):
    """Response body; `errors` carries field-level detail for 422s."""

    type: str
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
        status: int,
        code: ErrorCode,
        detail: str,
        instance: Optional[str] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
        trace_id: Optional[str] = None,
    ) -> "ProblemDetail":
        return cls(
            type=f"{PROBLEM_BASE_URL}/{code.value.lower().replace('_', '-')}",
            title=STATUS_TITLES.get(status, "Error"),
            status=status,
            detail=detail,
            instance=instance,
            code=code.value,
            timestamp=datetime.utcnow().isoformat() + "Z",
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


class EngineException(HTTPException):
    """
    Base class for errors that carry a machine-readable code.

        raise EngineException(404, ErrorCode.NOT_FOUND, "Survey not found")
    """

    def __init__(
        self,
        status_code: int,
        code: ErrorCode,
        detail: str,
        errors: Optional[List[Dict[str, Any]]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.code = code
        self.errors = errors
        super().__init__(status_code=status_code, detail=detail, headers=headers)

    def to_problem(self, instance: Optional[str] = None) -> ProblemDetail:
        return ProblemDetail.build(
            self.status_code, self.code, self.detail, instance=instance, errors=self.errors
        )


class NotFoundError(EngineException):
    """Survey or other resource does not exist (404)."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(404, ErrorCode.NOT_FOUND, f"{resource} with ID {resource_id} was not found")


class ValidationError(EngineException):
    """Malformed input on the read path, e.g. an unparseable date range (422)."""

    def __init__(self, detail: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(422, ErrorCode.VALIDATION_ERROR, detail, errors=errors)


class AggregationError(EngineException):
    """Underlying data fetch failed while computing analytics (503)."""

    def __init__(self, detail: str):
        super().__init__(503, ErrorCode.AGGREGATION_ERROR, f"Analytics aggregation failed: {detail}")


class ExternalProviderError(EngineException):
    """Messaging provider rejected a request or was unreachable (502)."""

    def __init__(
        self,
        service: str,
        detail: str,
        payload: Optional[Dict[str, Any]] = None,
        status: Optional[int] = None,
        code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_ERROR,
    ):
        self.service = service
        self.payload = payload
        self.provider_status = status
        super().__init__(502, code, f"{service} service error: {detail}")


class MissingCredentialsError(EngineException):
    """Provider credentials are not configured (503)."""

    def __init__(self, service: str, missing: List[str]):
        self.service = service
        self.missing = missing
        super().__init__(
            503, ErrorCode.MISSING_CREDENTIALS, f"{service} credentials not configured: {', '.join(missing)}"
        )


def create_exception_handlers():
    """
    Handlers keyed by the exception family they serve; main.py registers them:

        handlers = create_exception_handlers()
        app.add_exception_handler(EngineException, handlers["engine"])
    """

    async def handle_engine_exception(request: Request, exc: EngineException) -> JSONResponse:
        problem = exc.to_problem(instance=request.url.path)
        logger.warning(
            f"{exc.code.value} on {request.url.path}: {exc.detail}",
            extra={"trace_id": problem.trace_id, "status_code": exc.status_code},
        )
        return problem.to_response(headers=exc.headers)

    async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        code = STATUS_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
        problem = ProblemDetail.build(exc.status_code, code, str(exc.detail), instance=request.url.path)
        return problem.to_response(headers=getattr(exc, "headers", None))

    async def handle_validation_exception(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {
                # drop the leading "body"/"query" segment
                "field": ".".join(str(loc) for loc in error["loc"][1:]) or str(error["loc"][0]),
                "message": error["msg"],
                "type": error["type"],
            }
            for error in exc.errors()
        ]
        problem = ProblemDetail.build(
            422, ErrorCode.VALIDATION_ERROR, "Request validation failed", instance=request.url.path, errors=errors
        )
        return problem.to_response()

    async def handle_generic_exception(request: Request, exc: Exception) -> JSONResponse:
        from app.config import settings
        from app.core.sentry import capture_exception

        trace_id = uuid.uuid4().hex[:12]
        logger.error(
            f"Unhandled exception on {request.method} {request.url.path}: {exc}",
            exc_info=exc,
            extra={"trace_id": trace_id},
        )
        capture_exception(exc, context={"trace_id": trace_id, "path": request.url.path, "method": request.method})

        detail = str(exc) if settings.DEBUG else "An unexpected error occurred"
        problem = ProblemDetail.build(
            500, ErrorCode.INTERNAL_ERROR, detail, instance=request.url.path, trace_id=trace_id
        )
        return problem.to_response()

    return {
        "engine": handle_engine_exception,
        "http": handle_http_exception,
        "validation": handle_validation_exception,
        "generic": handle_generic_exception,
    }
