"""
Error Handling for ReviewIQ

Exception hierarchy shared by the scheduling service, the batch
orchestrator and the HTTP layer, plus helpers that turn those exceptions
into log records and API payloads.

Failure kinds:
1. ValidationError - malformed request or options
2. NotFoundError - referenced entity does not exist
3. TransientStoreError - persistent store or cache unavailable
4. ComputationInvariantViolation - a computed value broke a contract
"""

import logging
import traceback
from enum import Enum
from typing import Any, Dict, List, Optional
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """Severity levels for errors"""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCode(Enum):
    """Standard error codes for ReviewIQ"""
    UNKNOWN_ERROR = "unknown_error"
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND_ERROR = "not_found_error"
    CONFIGURATION_ERROR = "configuration_error"

    # Persistence
    DATABASE_ERROR = "database_error"
    CACHE_ERROR = "cache_error"

    # Scheduling computations
    COMPUTATION_ERROR = "computation_error"


class ErrorInfo(BaseModel):
    """Structured information about an error"""
    model_config = ConfigDict(use_enum_values=True)

    code: ErrorCode
    message: str
    timestamp: datetime = Field(default_factory=datetime.now)
    severity: ErrorSeverity = ErrorSeverity.ERROR
    details: Optional[Dict[str, Any]] = None
    exception_type: Optional[str] = None
    stack_trace: Optional[List[str]] = None


class ReviewIQError(Exception):
    """Base exception class for all ReviewIQ errors"""

    code = ErrorCode.UNKNOWN_ERROR
    severity = ErrorSeverity.ERROR
    status_code = 500

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause
        self.timestamp = datetime.now()

    def to_error_info(self, include_stack_trace: bool = False) -> ErrorInfo:
        """Convert the exception to an ErrorInfo object"""
        details = dict(self.details)
        if self.cause is not None:
            details["cause"] = {
                "type": type(self.cause).__name__,
                "message": str(self.cause)
            }

        stack_trace = None
        if include_stack_trace:
            stack_trace = traceback.format_exception(type(self), self, self.__traceback__)

        return ErrorInfo(
            code=self.code,
            message=self.message,
            severity=self.severity,
            details=details or None,
            exception_type=type(self).__name__,
            stack_trace=stack_trace,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert the exception to a JSON-serialisable dictionary"""
        return self.to_error_info().model_dump(mode="json", exclude_none=True)


class ValidationError(ReviewIQError):
    """Malformed request or scheduling options."""

    code = ErrorCode.VALIDATION_ERROR
    severity = ErrorSeverity.WARNING
    status_code = 422

    def __init__(self, message: str, errors: Optional[Dict[str, Any]] = None):
        super().__init__(message, details={"errors": errors} if errors else None)
        self.errors = errors or {}


class NotFoundError(ReviewIQError):
    """Referenced entity does not exist."""

    code = ErrorCode.NOT_FOUND_ERROR
    severity = ErrorSeverity.INFO
    status_code = 404

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            f"{entity} {entity_id} not found",
            details={"entity": entity, "id": str(entity_id)}
        )
        self.entity = entity
        self.entity_id = entity_id


class ConfigurationError(ReviewIQError):
    """Invalid or unreadable configuration."""

    code = ErrorCode.CONFIGURATION_ERROR
    severity = ErrorSeverity.CRITICAL


class TransientStoreError(ReviewIQError):
    """The persistent store or cache is unavailable; callers may retry."""

    code = ErrorCode.DATABASE_ERROR
    status_code = 503


class CacheError(TransientStoreError):
    """The cache backend failed."""

    code = ErrorCode.CACHE_ERROR
    severity = ErrorSeverity.WARNING


class ComputationInvariantViolation(ReviewIQError):
    """A computed interval, level or score broke its contract."""

    code = ErrorCode.COMPUTATION_ERROR
    severity = ErrorSeverity.CRITICAL


def error_response(error: Exception, include_stack_trace: bool = False) -> Dict[str, Any]:
    """
    Build an API error payload.

    Args:
        error: Exception to convert
        include_stack_trace: Attach the formatted traceback

    Returns:
        Dictionary with an ``error`` key
    """
    if isinstance(error, ReviewIQError):
        info = error.to_error_info(include_stack_trace=include_stack_trace)
    else:
        info = ErrorInfo(
            code=ErrorCode.UNKNOWN_ERROR,
            message="An unexpected error occurred",
            exception_type=type(error).__name__,
        )
    return {"error": info.model_dump(mode="json", exclude_none=True)}


def log_error(
    error: Exception,
    log: Optional[logging.Logger] = None,
    context: Optional[Dict[str, Any]] = None
) -> None:
    """Log an exception at the level implied by its severity."""
    target = log or logger
    severity = getattr(error, "severity", ErrorSeverity.ERROR)
    level = getattr(logging, severity.value.upper(), logging.ERROR)
    data = dict(context or {})
    data["error_type"] = type(error).__name__
    if isinstance(error, ReviewIQError):
        data["error_code"] = error.code.value
        data.update(error.details)
    target.log(level, str(error), exc_info=level >= logging.ERROR, extra={"data": data})
