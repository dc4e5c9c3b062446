import logging
from typing import Any, Dict, Optional

from fastapi import status

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Application error carrying a machine-readable code and an HTTP status.

    Catalogue entries are declared once per module and called to get a fresh
    instance, so per-request details never leak between requests::

        TRIP_NOT_FOUND = AppError("TRIP_NOT_FOUND", 404, "Trip not found")
        raise TRIP_NOT_FOUND(trip_id=str(trip_id))
    """

    def __init__(
        self,
        code: str,
        status_code: int,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        err: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.code = code
        self.status_code = status_code
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})
        self.err = err

    def __call__(self, message: Optional[str] = None, **details: Any) -> "AppError":
        return type(self)(
            self.code,
            self.status_code,
            message if message is not None else self.message,
            {**self.details, **details},
            self.err,
        )

    def __str__(self) -> str:
        if self.err is not None:
            return f"{self.message}: {self.err}"
        return self.message

    def with_details(self, key: str, value: Any) -> "AppError":
        clone = self()
        clone.details[key] = value
        return clone

    def wrap(self, err: BaseException) -> "AppError":
        clone = self()
        clone.err = err
        return clone

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


# ================================
# Request / validation
# ================================
INVALID_INPUT = AppError("INVALID_INPUT", status.HTTP_400_BAD_REQUEST, "Invalid input data")
INVALID_JSON = AppError("INVALID_JSON", status.HTTP_400_BAD_REQUEST, "Invalid JSON format")
INVALID_UUID = AppError("INVALID_UUID", status.HTTP_400_BAD_REQUEST, "Invalid UUID format")
MISSING_FIELD = AppError("MISSING_FIELD", status.HTTP_400_BAD_REQUEST, "Required field is missing")
MISSING_REQUEST_BODY = AppError("MISSING_REQUEST_BODY", status.HTTP_400_BAD_REQUEST, "Request body is required")
UNPROCESSABLE_ENTITY = AppError(
    "UNPROCESSABLE_ENTITY", status.HTTP_422_UNPROCESSABLE_ENTITY, "The provided input data is invalid"
)

# ================================
# Auth
# ================================
UNAUTHORIZED = AppError("UNAUTHORIZED", status.HTTP_401_UNAUTHORIZED, "Authentication required")
INVALID_TOKEN = AppError("INVALID_TOKEN", status.HTTP_401_UNAUTHORIZED, "Invalid or expired token")
FORBIDDEN = AppError("FORBIDDEN", status.HTTP_403_FORBIDDEN, "Access denied")

# ================================
# Resource state
# ================================
NOT_FOUND = AppError("NOT_FOUND", status.HTTP_404_NOT_FOUND, "Resource not found")
CONFLICT = AppError("CONFLICT", status.HTTP_409_CONFLICT, "Resource conflict")
TIMEOUT = AppError("TIMEOUT", status.HTTP_408_REQUEST_TIMEOUT, "Request timeout")
RATE_LIMIT_EXCEEDED = AppError("RATE_LIMIT_EXCEEDED", status.HTTP_429_TOO_MANY_REQUESTS, "Rate limit exceeded")

# ================================
# Internal
# ================================
INTERNAL_ERROR = AppError("INTERNAL_ERROR", status.HTTP_500_INTERNAL_SERVER_ERROR, "An unexpected error occurred")
DATABASE_ERROR = AppError("DATABASE_ERROR", status.HTTP_500_INTERNAL_SERVER_ERROR, "Database operation failed")
TRANSACTION_BEGIN = AppError("TRANSACTION_BEGIN", status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to begin transaction")
TRANSACTION_COMMIT = AppError(
    "TRANSACTION_COMMIT", status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to commit transaction"
)
EXTERNAL_SERVICE = AppError("EXTERNAL_SERVICE", status.HTTP_502_BAD_GATEWAY, "External service unavailable")


def map_error(err: BaseException) -> AppError:
    """Return ``err`` if it already is an AppError, otherwise an INTERNAL_ERROR wrapping it"""
    if isinstance(err, AppError):
        return err
    return INTERNAL_ERROR.wrap(err)


def log_app_error(err: BaseException, request_id: str = "-") -> None:
    app_err = map_error(err)
    if app_err.status_code < 500:
        logger.info("request_id=%s code=%s message=%s", request_id, app_err.code, app_err.message)
    elif app_err.err is not None:
        logger.error(
            "request_id=%s code=%s message=%s internal=%r",
            request_id, app_err.code, app_err.message, app_err.err,
        )
    else:
        logger.error("request_id=%s code=%s message=%s", request_id, app_err.code, app_err.message)
