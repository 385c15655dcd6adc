"""
Custom Exception Hierarchy

Structured exceptions for consistent error handling across the intake pipeline.
None of these messages are shown to chat users; they are for logs and the HTTP layer.
"""
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standard error codes for API responses and logs"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    ALREADY_EXISTS = "ERR_1003"

    # Vehicle errors (2xxx)
    VEHICLE_PERSISTENCE_FAILED = "ERR_2001"
    DISPLAY_CODE_CONFLICT = "ERR_2002"
    DISPLAY_CODE_EXHAUSTED = "ERR_2003"

    # Media errors (3xxx)
    MEDIA_UNAVAILABLE = "ERR_3001"
    MEDIA_DOWNLOAD_FAILED = "ERR_3002"
    MEDIA_TOO_LARGE = "ERR_3003"

    # External service errors (5xxx)
    LLM_ERROR = "ERR_5001"
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5003"
    EXTERNAL_SERVICE_TIMEOUT = "ERR_5004"

    # State machine errors (6xxx)
    INVALID_STATE_TRANSITION = "ERR_6001"
    SESSION_NOT_FOUND = "ERR_6002"
    INVALID_STATE = "ERR_6003"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationException(AppException):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class NotFoundException(AppException):
    """Raised when a requested resource is not found"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


class VehicleException(AppException):
    """Base exception for vehicle persistence errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        tenant_id: int | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=409,
            details=details
        )
        if tenant_id is not None:
            self.details["tenant_id"] = tenant_id


class DisplayCodeConflictError(VehicleException):
    """Raised when the candidate display code was taken by a concurrent insert"""

    def __init__(self, tenant_id: int, code: str):
        super().__init__(
            message=f"Display code {code} already exists for tenant {tenant_id}",
            error_code=ErrorCode.DISPLAY_CODE_CONFLICT,
            tenant_id=tenant_id,
            details={"code": code}
        )


class DisplayCodeExhaustedError(VehicleException):
    """Raised when no free display code could be allocated within the attempt budget"""

    def __init__(self, tenant_id: int, prefix: str, attempts: int):
        super().__init__(
            message=f"Could not allocate a display code with prefix {prefix} after {attempts} attempts",
            error_code=ErrorCode.DISPLAY_CODE_EXHAUSTED,
            tenant_id=tenant_id,
            details={"prefix": prefix, "attempts": attempts}
        )
        self.status_code = 503


class VehiclePersistenceError(VehicleException):
    """Raised when the confirmed draft could not be written"""

    def __init__(self, tenant_id: int, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"Vehicle could not be saved: {message}",
            error_code=ErrorCode.VEHICLE_PERSISTENCE_FAILED,
            tenant_id=tenant_id,
            details=details
        )
        self.status_code = 500


class MediaException(AppException):
    """Base exception for media storage errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=422,
            details=details
        )


class MediaUnavailableError(MediaException):
    """The attachment exists but the transport gave no retrievable URL.

    Not a hard failure: the photo is counted and the user adds it later.
    """

    def __init__(self, url: str | None = None):
        super().__init__(
            message="Media attachment has no retrievable URL",
            error_code=ErrorCode.MEDIA_UNAVAILABLE,
            details={"url": url}
        )


class MediaDownloadError(MediaException):
    """Raised when a media URL could not be downloaded or stored.

    outage marks failures of the media host itself (5xx, connection errors) as opposed
    to a bad attachment (404, too large).
    """

    def __init__(
        self,
        url: str,
        reason: str,
        error_code: ErrorCode = ErrorCode.MEDIA_DOWNLOAD_FAILED,
        outage: bool = False,
    ):
        super().__init__(
            message=f"Failed to download media: {reason}",
            error_code=error_code,
            details={"url": url, "reason": reason}
        )
        self.outage = outage


class ExternalServiceException(AppException):
    """Base exception for external service errors"""

    def __init__(
        self,
        service_name: str,
        message: str,
        error_code: ErrorCode = ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=503,
            details=details
        )
        self.details["service"] = service_name


class LLMServiceError(ExternalServiceException):
    """Raised when the language model endpoint fails or returns an unusable body"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="llm",
            message=f"LLM API error: {message}",
            error_code=ErrorCode.LLM_ERROR,
            details=details
        )

    @classmethod
    def from_response(
        cls,
        operation: str,
        response: Any,
        *,
        max_response_chars: int = 500
    ) -> "LLMServiceError":
        """Build an error from an HTTP response without logging the whole body"""
        status_code = getattr(response, "status_code", None)
        response_text = getattr(response, "text", "") or ""
        return cls(
            message=f"{operation} returned status {status_code}",
            details={
                "operation": operation,
                "status_code": status_code,
                "response_text": response_text[:max_response_chars],
            },
        )


class ServiceTimeoutError(ExternalServiceException):
    """Raised when external service times out"""

    def __init__(self, service_name: str, timeout_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} request timed out after {timeout_seconds}s",
            error_code=ErrorCode.EXTERNAL_SERVICE_TIMEOUT,
            details={"timeout_seconds": timeout_seconds}
        )


class CircuitBreakerOpenError(ExternalServiceException):
    """Raised when circuit breaker is open"""

    def __init__(self, service_name: str, retry_after_seconds: float):
        super().__init__(
            service_name=service_name,
            message=f"{service_name} is temporarily unavailable (circuit breaker open)",
            error_code=ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
            details={"retry_after_seconds": retry_after_seconds}
        )


class StateMachineException(AppException):
    """Base exception for state machine errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=400,
            details=details
        )


class InvalidStateTransitionError(StateMachineException):
    """Raised when a flow has no transition from the current step"""

    def __init__(self, flow: str, current_step: str, target_step: str | None = None):
        super().__init__(
            message=f"Invalid transition in '{flow}' from '{current_step}' to '{target_step}'",
            error_code=ErrorCode.INVALID_STATE_TRANSITION,
            details={
                "flow": flow,
                "current_step": current_step,
                "target_step": target_step,
            }
        )


class SessionNotFoundError(StateMachineException):
    """Raised when a step operation targets a conversation that is not active"""

    def __init__(self, tenant_id: int, user_handle: str):
        super().__init__(
            message=f"No active conversation for tenant {tenant_id}",
            error_code=ErrorCode.SESSION_NOT_FOUND,
            details={"tenant_id": tenant_id}
        )
        self.status_code = 404


class ConversationBusyError(StateMachineException):
    """Raised when the per-user conversation lock could not be acquired in time"""

    def __init__(self, key: str, waited_seconds: float):
        super().__init__(
            message=f"Conversation {key} is busy",
            error_code=ErrorCode.INVALID_STATE,
            details={"waited_seconds": waited_seconds}
        )
        self.status_code = 409
