"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes
    • Consistent JSON error response format
    • Automatic logging of unhandled errors
    • Request context in error responses (non-production)

Recovery policy by error class:

    Error                     Raised by                 Surfaced to caller?
    ──────────────────────    ──────────────────────    ─────────────────────
    ValidationError           API boundaries            yes (422)
    NotFoundError             ack / threshold admin     yes (404)
    AlreadyAcknowledgedError  ack                       yes (409)
    PersistenceError          stores / recorder         reading: logged only
                                                        manual alert: yes (500)
    DispatchError             channel backends          never (report entry)
    ExternalServiceError      sensor feed               trigger endpoint only

Usage:
    from backend.app.core.errors import NotFoundError

    raise NotFoundError("Alert", alert_id="ALR-0123456789AB")
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.app.core.config import settings
from backend.app.core.logging_config import get_request_context

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class RadiationAPIError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class NotFoundError(RadiationAPIError):
    """Resource not found (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details=details,
        )


class ValidationError(RadiationAPIError):
    """Input validation failed (422)."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=422,
            error_code="VALIDATION_ERROR",
            details=d,
        )


class AlreadyAcknowledgedError(RadiationAPIError):
    """Acknowledgment attempted on an alert that is already acknowledged (409)."""

    def __init__(self, alert_id: str, acknowledged_by: Optional[str] = None):
        super().__init__(
            message=f"Alert {alert_id} is already acknowledged",
            status_code=409,
            error_code="ALREADY_ACKNOWLEDGED",
            details={"alert_id": alert_id, "acknowledged_by": acknowledged_by},
        )


class PersistenceError(RadiationAPIError):
    """A store write or read failed (500)."""

    def __init__(self, operation: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Persistence failure during '{operation}': {message}",
            status_code=500,
            error_code="PERSISTENCE_ERROR",
            details={"operation": operation, **details},
        )


class DispatchError(RadiationAPIError):
    """A single notification send failed for one recipient/channel."""

    def __init__(self, recipient_id: str, channel: str, message: str = ""):
        super().__init__(
            message=f"Notification to {recipient_id} via {channel} failed: {message}",
            status_code=502,
            error_code="DISPATCH_ERROR",
            details={"recipient_id": recipient_id, "channel": channel},
        )
        self.recipient_id = recipient_id
        self.channel = channel
        self.reason = message


class ExternalServiceError(RadiationAPIError):
    """External API call failed (502)."""

    def __init__(self, service: str, message: str = "", **details: Any):
        super().__init__(
            message=f"External service '{service}' failed: {message}",
            status_code=502,
            error_code="EXTERNAL_SERVICE_ERROR",
            details={"service": service, **details},
        )


# ═══════════════════════════════════════════════════════════════════════════
# Error Responses
# ═══════════════════════════════════════════════════════════════════════════

# Expected outcomes of normal operation (ack races, unknown ids); not warnings
_ROUTINE_STATUSES = {404, 409}


def _error_response(
    request: Request,
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    error: Dict[str, Any] = {"code": error_code, "message": message, "status": status_code}
    if details:
        error["details"] = details

    request_id = get_request_context().get("request_id")
    if request_id:
        error["request_id"] = request_id
    if not settings.is_production:
        error["path"] = request.url.path
        error["method"] = request.method

    return JSONResponse(
        status_code=status_code,
        content={"error": error},
        headers={"X-Error-Code": error_code},
    )


def _field_errors(exc: RequestValidationError) -> Dict[str, Any]:
    fields = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ())]
        # drop the leading "body" / "query" / "path" segment
        fields.append({
            "field": ".".join(loc[1:]) or ".".join(loc),
            "source": loc[0] if loc else "",
            "msg": err.get("msg", ""),
        })
    return {"errors": fields}


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(RadiationAPIError)
    async def handle_radiation_error(request: Request, exc: RadiationAPIError):
        if exc.status_code >= 500:
            level = logging.ERROR
        elif exc.status_code in _ROUTINE_STATUSES:
            level = logging.INFO
        else:
            level = logging.WARNING
        logger.log(level, "%s %s → %s: %s", request.method, request.url.path,
                   exc.error_code, exc.message,
                   extra={"status_code": exc.status_code,
                          "alert_id": exc.details.get("alert_id")})
        return _error_response(request, exc.status_code, exc.error_code,
                               exc.message, exc.details)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        details = _field_errors(exc)
        logger.warning("Rejected %s %s: %s", request.method, request.url.path,
                       [e["field"] for e in details["errors"]])
        return _error_response(request, 422, "VALIDATION_ERROR",
                               "Request validation failed", details)

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical("Unhandled %s on %s %s", type(exc).__name__,
                        request.method, request.url.path, exc_info=exc)
        if settings.DEBUG and not settings.is_production:
            return _error_response(
                request, 500, "INTERNAL_ERROR", f"{type(exc).__name__}: {exc}",
                {"traceback": traceback.format_exception(type(exc), exc, exc.__traceback__)},
            )
        return _error_response(request, 500, "INTERNAL_ERROR", "Internal server error")
