"""
Exception taxonomy for the ranking service and the FastAPI handlers that turn
it into HTTP responses.

Service code raises these; only ``main.py`` knows about status codes.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

import structlog
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)


class ServiceException(Exception):
    """Base exception for service layer errors."""

    status_code = 500

    def __init__(self, message: str = ""):
        self.message = message or (self.__class__.__doc__ or "").strip()
        super().__init__(self.message)

    def payload(self) -> Dict[str, Any]:
        return {}


# --- Admission --- #
class AdmissionDenied(ServiceException):
    """Usage admission refused."""

    status_code = 403


class NoActivePlan(AdmissionDenied):
    """No active plan. Please subscribe to a plan to use this feature."""


class QuotaExceeded(AdmissionDenied):
    """Plan limit exceeded. Please upgrade your plan."""

    def __init__(self, kind, usage, message: str = ""):
        self.kind = kind
        self.usage = usage
        super().__init__(message)

    def payload(self) -> Dict[str, Any]:
        return {
            "resource": self.kind.value,
            "current": self.usage.current,
            "limit": self.usage.limit,
            "remaining": self.usage.remaining,
        }


# --- Input --- #
class ValidationError(ServiceException):
    """Invalid request."""

    status_code = 400


class NotFound(ServiceException):
    """Resource not found."""

    status_code = 404


# --- Documents --- #
class ExtractionError(ServiceException):
    """Could not read the uploaded document."""

    status_code = 400


class UnsupportedType(ExtractionError):
    """Invalid file type. Only PDF and TXT files are allowed."""

    def __init__(self, content_type: Optional[str]):
        self.content_type = content_type
        super().__init__(f"Unsupported file type: {content_type}. Only PDF and TXT files are allowed.")


class ExtractionFailed(ExtractionError):
    """Failed to extract text from the document."""

    def __init__(self, filename: Optional[str] = None, cause: Optional[BaseException] = None):
        self.filename = filename
        self.cause = cause
        if filename:
            super().__init__(f"Failed to extract text from {filename}")
        else:
            super().__init__()


# --- Scoring oracle --- #
class ScoringError(ServiceException):
    """Failed to get prediction from ML model."""

    status_code = 502


class OracleTimeout(ScoringError):
    """The oracle did not answer within the client timeout."""

    def __init__(self):
        super().__init__("ML model request timeout")


class OracleError(ScoringError):
    """ML model returned an error."""

    def __init__(self, status_code: Optional[int] = None):
        self.oracle_status = status_code
        if status_code is None:
            super().__init__("Failed to get prediction from ML model")
        else:
            super().__init__(f"ML model error: {status_code}")


class MalformedResponse(ScoringError):
    """The oracle answered with a body that is not a prediction."""

    def __init__(self):
        super().__init__("Invalid response from ML model")


# --- Batch --- #
class BatchFailed(ServiceException):
    """Ranking batch failed."""

    def __init__(self, batch_id: int, message: str):
        self.batch_id = batch_id
        super().__init__(message)

    def payload(self) -> Dict[str, Any]:
        return {"batch": {"id": self.batch_id, "status": "failed", "error": self.message}}


class InternalError(ServiceException):
    """Internal server error."""


async def service_exception_handler(request: Request, exc: ServiceException) -> JSONResponse:
    """Render a ServiceException with its status code and extra payload."""
    if exc.status_code >= 500:
        logger.error("Service error", path=request.url.path, error=exc.message, exc_info=exc)
    else:
        logger.info("Request rejected", path=request.url.path, error=exc.message, type=exc.__class__.__name__)

    content = {
        "success": False,
        "error": exc.message,
        "type": exc.__class__.__name__,
    }
    content.update(exc.payload())
    return JSONResponse(status_code=exc.status_code, content=content)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail, "type": "HTTPException"},
        headers=getattr(exc, "headers", None),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unexpected error", path=request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error", "type": "InternalError"},
    )
