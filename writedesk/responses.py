"""
writedesk API Response Utilities
Standardized response envelopes and error handling
"""
from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone

from .database import STORE_UNAVAILABLE_ERRORS
from .errors import TransientStoreFailure, WorkflowError
from .logging_config import api_logger


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# ============================================================
# SUCCESS RESPONSES
# ============================================================

def success(data: Any = None, message: str = None, meta: Dict = None) -> Dict:
    """Create success response"""
    response = {
        "ok": True,
        "timestamp": _timestamp(),
    }

    if data is not None:
        response["data"] = data

    if message:
        response["message"] = message

    if meta:
        response["meta"] = meta

    return response


def deleted(message: str = "Deleted successfully") -> Dict:
    """200 Deleted response"""
    return success(message=message)


def paginated(items: List, total: int, page: int = 1, per_page: int = 20) -> Dict:
    """Paginated list response"""
    return {
        "ok": True,
        "data": items,
        "pagination": {
            "total": total,
            "page": page,
            "per_page": per_page,
            "total_pages": (total + per_page - 1) // per_page,
            "has_next": page * per_page < total,
            "has_prev": page > 1,
        },
        "timestamp": _timestamp(),
    }


# ============================================================
# ERROR RESPONSES
# ============================================================

class ApiException(HTTPException):
    """Custom API exception with error codes"""

    def __init__(
        self,
        status_code: int,
        message: str,
        error_code: str = None,
        details: Dict = None,
    ):
        self.error_code = error_code or f"ERR_{status_code}"
        self.details = details
        super().__init__(status_code=status_code, detail=message)


def _error_body(message: str, error_code: str, details: Optional[Dict] = None) -> Dict:
    return {
        "ok": False,
        "error": message,
        "error_code": error_code,
        "details": jsonable_encoder(details) if details is not None else None,
        "timestamp": _timestamp(),
    }


# ============================================================
# EXCEPTION HANDLER
# ============================================================

async def api_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for API errors"""

    # Store failures raised outside a workflow operation, e.g. inline route queries
    if isinstance(exc, STORE_UNAVAILABLE_ERRORS):
        exc = TransientStoreFailure("The data store is temporarily unavailable, retry the operation")

    # Workflow failures carry their own status and code
    if isinstance(exc, WorkflowError):
        log = api_logger.error if exc.status_code >= 500 else api_logger.warning
        log(
            f"Workflow Error: {exc.message}",
            status_code=exc.status_code,
            error_code=exc.error_code,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.message, exc.error_code, exc.details),
        )

    if isinstance(exc, RequestValidationError):
        api_logger.warning("Request validation failed", path=request.url.path)
        return JSONResponse(
            status_code=422,
            content=_error_body("Request validation failed", "VALIDATION_ERROR", {"errors": exc.errors()}),
        )

    # Handle ApiException
    if isinstance(exc, ApiException):
        api_logger.warning(
            f"API Error: {exc.detail}",
            status_code=exc.status_code,
            error_code=exc.error_code,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.detail, exc.error_code, exc.details),
            headers=exc.headers,
        )

    # Handle HTTPException
    if isinstance(exc, HTTPException):
        api_logger.warning(
            f"HTTP Error: {exc.detail}",
            status_code=exc.status_code,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.detail, f"HTTP_{exc.status_code}"),
            headers=exc.headers,
        )

    # Handle unexpected errors
    api_logger.error(
        f"Unexpected error: {exc}",
        error=exc,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=500,
        content=_error_body("An unexpected error occurred", "INTERNAL_ERROR"),
    )
