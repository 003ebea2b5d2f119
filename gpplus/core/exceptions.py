from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class GpPlusException(Exception):
    """Base exception for the GP Plus backend"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(GpPlusException):
    """Configuration related errors"""
    pass


class RecognitionFailure(GpPlusException):
    """Speech provider failed for the current capture cycle"""

    def __init__(self, reason: str, details: Optional[Dict[str, Any]] = None):
        self.reason = reason
        super().__init__(reason, details)


class SessionDisposedError(GpPlusException):
    """Operation attempted on a torn-down chat session"""
    pass


# HTTP Exceptions for FastAPI
class HTTPServiceUnavailableError(HTTPException):
    """HTTP service unavailable error"""

    def __init__(self, detail: str = "Service temporarily unavailable", retry_after: int = 30):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"message": detail, "type": "service_unavailable_error"},
            headers={"Retry-After": str(retry_after)}
        )


class HTTPInternalServerError(HTTPException):
    """HTTP internal server error"""

    def __init__(self, detail: str = "Internal server error", error_id: str = None):
        error_detail = {"message": detail, "type": "internal_server_error"}
        if error_id:
            error_detail["error_id"] = error_id

        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=error_detail
        )


# Exception mapping for consistent error responses
EXCEPTION_MAP = {
    ConfigurationError: HTTPServiceUnavailableError,
    SessionDisposedError: HTTPServiceUnavailableError,
}


def map_exception_to_http(exc: GpPlusException) -> HTTPException:
    """Map application exception to HTTP exception"""
    exception_class = EXCEPTION_MAP.get(type(exc), HTTPInternalServerError)

    if exception_class == HTTPServiceUnavailableError:
        retry_after = exc.details.get('retry_after', 30)
        return exception_class(exc.message, retry_after)
    error_id = exc.details.get('error_id')
    return exception_class(exc.message, error_id)
