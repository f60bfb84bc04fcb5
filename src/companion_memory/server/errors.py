"""
Standard error handling for the HTTP surface.

Maps memory-system exceptions to status codes and builds the JSON error
envelope ``{"error": {"code", "message", "data"}}`` used by every failing
response.
"""

from enum import Enum
from typing import Any, Dict, Optional, Tuple
import logging

from ..memory.exceptions import (
    MemorySystemError,
    PersistenceError,
    ProviderError,
    ValidationError,
)


class ErrorCode(str, Enum):
    """Error codes carried in the response envelope."""
    VALIDATION_ERROR = "validation_error"
    RESOURCE_NOT_FOUND = "resource_not_found"
    PROVIDER_ERROR = "provider_error"
    PERSISTENCE_ERROR = "persistence_error"
    MEMORY_SYSTEM_ERROR = "memory_system_error"
    INTERNAL_ERROR = "internal_error"


def create_error_response(
    code: ErrorCode,
    message: str,
    data: Optional[Dict[str, Any]] = None,
    log_error: bool = True
) -> Dict[str, Any]:
    """Create a standardized error response body.

    Args:
        code: Error code from ErrorCode
        message: Human-readable error message
        data: Optional additional error data
        log_error: Whether to log the error

    Returns:
        Error envelope dictionary
    """
    if log_error:
        logging.error(f"API Error {code.value}: {message}")
        if data:
            logging.error(f"Error data: {data}")

    return {
        "error": {
            "code": code.value,
            "message": message,
            "data": data or {}
        }
    }


def create_not_found_error(resource_type: str, resource_id: str) -> Dict[str, Any]:
    return create_error_response(
        code=ErrorCode.RESOURCE_NOT_FOUND,
        message=f"{resource_type} '{resource_id}' not found",
        data={
            "resource_type": resource_type,
            "resource_id": resource_id
        },
        log_error=False
    )


def classify_exception(error: Exception) -> Tuple[int, ErrorCode]:
    """Map an exception to its HTTP status and error code."""
    if isinstance(error, ValidationError):
        return 400, ErrorCode.VALIDATION_ERROR
    if isinstance(error, ProviderError):
        return 502, ErrorCode.PROVIDER_ERROR
    if isinstance(error, PersistenceError):
        return 500, ErrorCode.PERSISTENCE_ERROR
    if isinstance(error, MemorySystemError):
        return 500, ErrorCode.MEMORY_SYSTEM_ERROR
    return 500, ErrorCode.INTERNAL_ERROR


def error_from_exception(error: Exception) -> Tuple[int, Dict[str, Any]]:
    status, code = classify_exception(error)
    details = error.details if isinstance(error, MemorySystemError) else {"type": type(error).__name__}
    # Client mistakes are not server errors
    return status, create_error_response(code, str(error), details, log_error=status >= 500)
