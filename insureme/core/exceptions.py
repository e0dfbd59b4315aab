"""
Custom Exception Hierarchy

Every API-facing failure is an AppException subclass; the exception handlers
in core.middleware turn them into a structured JSON body with an HTTP status.
"""
from decimal import Decimal
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    UNAUTHORIZED = "ERR_1004"
    FORBIDDEN = "ERR_1005"
    RATE_LIMITED = "ERR_1006"
    INVALID_PHONE_FORMAT = "ERR_1007"

    # Plan / policy errors (2xxx)
    PLAN_NOT_FOUND = "ERR_2001"
    PREMIUM_OUT_OF_RANGE = "ERR_2002"
    POLICY_NOT_FOUND = "ERR_2003"

    # User errors (3xxx)
    USER_NOT_FOUND = "ERR_3001"

    # Payment errors (4xxx)
    PAYMENT_PUSH_FAILED = "ERR_4001"
    PAYMENT_CALLBACK_MALFORMED = "ERR_4002"
    PAYMENT_NOT_FOUND = "ERR_4003"

    # External service errors (5xxx)
    MPESA_ERROR = "ERR_5001"
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5003"
    EXTERNAL_SERVICE_TIMEOUT = "ERR_5004"

    # USSD session / menu errors (6xxx)
    UNKNOWN_MENU_CHOICE = "ERR_6001"
    SESSION_NOT_FOUND = "ERR_6002"
    SESSION_PHONE_MISMATCH = "ERR_6003"


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
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class InvalidPhoneFormat(ValidationException):
    """Raised when a phone number is not a valid Kenyan mobile number"""

    def __init__(self, phone: str | None):
        # never echo the full number back
        shown = (phone or "")[:4] + "****" if phone else ""
        super().__init__(
            message="Invalid phone number format",
            field="phoneNumber",
            error_code=ErrorCode.INVALID_PHONE_FORMAT,
            details={"received": shown},
        )


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


class SessionNotFound(NotFoundException):
    """Raised by the inspection API only - the USSD path treats absence as 'create new'"""

    def __init__(self, session_id: str):
        super().__init__("Session", session_id, ErrorCode.SESSION_NOT_FOUND)


class PlanNotFoundError(NotFoundException):
    def __init__(self, identifier: Any):
        super().__init__("Plan", identifier, ErrorCode.PLAN_NOT_FOUND)


class PolicyNotFoundError(NotFoundException):
    def __init__(self, identifier: Any):
        super().__init__("Policy", identifier, ErrorCode.POLICY_NOT_FOUND)


class UserNotFoundError(NotFoundException):
    def __init__(self, identifier: Any):
        super().__init__("User", identifier, ErrorCode.USER_NOT_FOUND)


class PaymentNotFoundError(NotFoundException):
    def __init__(self, identifier: Any):
        super().__init__("Payment", identifier, ErrorCode.PAYMENT_NOT_FOUND)


class PremiumOutOfRange(AppException):
    """Raised when a premium falls outside the plan's configured range"""

    def __init__(self, premium: Decimal, min_premium: Decimal, max_premium: Decimal):
        super().__init__(
            message=f"Premium must be between {min_premium} and {max_premium}",
            error_code=ErrorCode.PREMIUM_OUT_OF_RANGE,
            status_code=400,
            details={
                "premium": str(premium),
                "min_premium": str(min_premium),
                "max_premium": str(max_premium),
            }
        )
        self.premium = premium
        self.min_premium = min_premium
        self.max_premium = max_premium


class UnknownMenuChoice(AppException):
    """Raised for input the current menu does not accept"""

    def __init__(self, state: str, choice: str):
        super().__init__(
            message=f"Unrecognized input for menu '{state}'",
            error_code=ErrorCode.UNKNOWN_MENU_CHOICE,
            status_code=400,
            details={"state": state, "choice": choice}
        )


class SessionPhoneMismatch(AppException):
    """Raised when a live session is reused with a different phone number"""

    def __init__(self, session_id: str):
        super().__init__(
            message=f"Session {session_id} is bound to another phone number",
            error_code=ErrorCode.SESSION_PHONE_MISMATCH,
            status_code=409,
            details={"session_id": session_id}
        )


class PaymentPushFailed(AppException):
    """The STK push request itself was rejected - the payment row stays pending"""

    def __init__(
        self,
        transaction_id: str,
        reason: str,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=f"Payment push failed: {reason}",
            error_code=ErrorCode.PAYMENT_PUSH_FAILED,
            status_code=502,
            details=details
        )
        self.transaction_id = transaction_id
        self.details["transaction_id"] = transaction_id


class PaymentCallbackMalformed(AppException):
    """The provider callback is missing its expected envelope"""

    def __init__(self, reason: str):
        super().__init__(
            message=f"Malformed payment callback: {reason}",
            error_code=ErrorCode.PAYMENT_CALLBACK_MALFORMED,
            status_code=400,
            details={"reason": reason}
        )


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


class MpesaError(ExternalServiceException):
    """Raised when the M-Pesa Daraja API fails"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="mpesa",
            message=f"M-Pesa API error: {message}",
            error_code=ErrorCode.MPESA_ERROR,
            details=details
        )

    @classmethod
    def from_response(
        cls,
        operation: str,
        response: Any,
        *,
        message: str | None = None,
        max_response_chars: int = 500
    ) -> "MpesaError":
        """
        Build an MpesaError from an HTTP response.

        Args:
            operation: Daraja operation name (oauth, stkpush, stkpushquery)
            response: response object (e.g. httpx.Response)
            message: custom message (built from the status code otherwise)
            max_response_chars: cap on the stored response body
        """
        status_code = getattr(response, "status_code", None)
        response_text = getattr(response, "text", "") or ""
        return cls(
            message=message or f"{operation} returned status {status_code}",
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
