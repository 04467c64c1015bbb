"""
Custom Exception Hierarchy

Provides structured exceptions for consistent error handling across the application.
Domain error codes double as the `code` field of outbound `server:error` events
and webhook error bodies, so their values are stable strings.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses and socket events"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    RATE_LIMITED = "ERR_1006"

    # Language model errors
    LLM_CONFIG = "LLM_CONFIG"
    LLM_HTTP_ERROR = "LLM_HTTP"
    LLM_RATE_LIMITED = "LLM_RATE_LIMITED"
    LLM_TIMEOUT = "LLM_TIMEOUT"
    LLM_UNAVAILABLE = "LLM_UNAVAILABLE"

    # Catalog / commerce errors
    CATALOG_NOT_CONFIGURED = "WC_NOT_CONFIGURED"
    CATALOG_ERROR = "WC_ERROR"

    # Order errors
    NO_ITEMS = "NO_ITEMS"
    INVALID_ORDER_FIELD = "VALIDATION"
    NEED_SHIPPING = "NEED_SHIPPING"
    CANCEL_WINDOW_EXCEEDED = "CANCEL_WINDOW_EXCEEDED"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"

    # Transport payload errors
    MISSING_DATA = "MISSING_DATA"
    INVALID_JSON = "INVALID_JSON"
    EMPTY_MESSAGE = "EMPTY_MESSAGE"

    # External service errors (5xxx)
    MESSENGER_ERROR = "ERR_5001"
    EXTERNAL_SERVICE_UNAVAILABLE = "ERR_5003"
    EXTERNAL_SERVICE_TIMEOUT = "ERR_5004"


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

    @property
    def code(self) -> str:
        """Short code used in socket error events and tool results"""
        return self.error_code.value

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
        self.field = field
        if field:
            self.details["field"] = field


class ConfigurationError(AppException):
    """Raised when a collaborator is missing required configuration"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.LLM_CONFIG,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=503,
            details=details
        )


class CatalogNotConfiguredError(ConfigurationError):
    """Raised when catalog credentials are absent"""

    def __init__(self):
        super().__init__(
            message="WooCommerce keys not set",
            error_code=ErrorCode.CATALOG_NOT_CONFIGURED,
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


def _response_details(operation: str, response: Any, max_response_chars: int) -> dict[str, Any]:
    status_code = getattr(response, "status_code", None)
    response_text = getattr(response, "text", "") or ""
    return {
        "operation": operation,
        "status_code": status_code,
        "response_text": response_text[:max_response_chars],
    }


class LLMError(ExternalServiceException):
    """Base class for language model transport failures"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.LLM_UNAVAILABLE,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            service_name="llm",
            message=message,
            error_code=error_code,
            details=details
        )


class LLMHTTPError(LLMError):
    """Raised when the model provider answers with a non-2xx status"""

    def __init__(self, status: int, details: dict[str, Any] | None = None):
        super().__init__(
            message=f"LLM_HTTP_{status}",
            error_code=ErrorCode.LLM_HTTP_ERROR,
            details=details
        )
        self.status = status
        self.details["status_code"] = status

    @classmethod
    def from_response(
        cls,
        operation: str,
        response: Any,
        *,
        max_response_chars: int = 500
    ) -> "LLMHTTPError":
        """
        Build the matching error for an httpx response.

        A 429 becomes LLMRateLimitError so the backoff controller can retry it.
        """
        details = _response_details(operation, response, max_response_chars)
        status = int(details["status_code"] or 0)
        if status == 429:
            return LLMRateLimitError(details=details)
        return cls(status, details=details)


class LLMRateLimitError(LLMHTTPError):
    """Raised on HTTP 429 from the model provider"""

    def __init__(self, details: dict[str, Any] | None = None):
        super().__init__(429, details=details)
        self.error_code = ErrorCode.LLM_RATE_LIMITED


class LLMTimeoutError(LLMError):
    """Raised when a model call exceeds its time budget"""

    def __init__(self, timeout_seconds: float):
        super().__init__(
            message=f"LLM request timed out after {timeout_seconds}s",
            error_code=ErrorCode.LLM_TIMEOUT,
            details={"timeout_seconds": timeout_seconds}
        )


class CatalogError(ExternalServiceException):
    """Raised when the WooCommerce REST API fails"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="woocommerce",
            message=f"WooCommerce API error: {message}",
            error_code=ErrorCode.CATALOG_ERROR,
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
    ) -> "CatalogError":
        """
        Build a CatalogError from an HTTP response.

        A 4xx becomes CatalogClientError, which the catalog breaker ignores.

        Args:
            operation: Operation name (e.g. products.search, orders.create)
            response: Response object (e.g. httpx.Response)
            message: Custom message (built from the status when omitted)
            max_response_chars: Cap on the stored response body
        """
        details = _response_details(operation, response, max_response_chars)
        status_code = details["status_code"] or 0
        error_cls = CatalogClientError if 400 <= status_code < 500 else cls
        return error_cls(
            message=message or f"{operation} returned status {details['status_code']}",
            details=details,
        )


class CatalogClientError(CatalogError):
    """WooCommerce rejected the request (4xx); the store itself is up"""


class MessengerError(ExternalServiceException):
    """Raised when the Facebook Graph API send fails"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            service_name="messenger",
            message=f"Messenger API error: {message}",
            error_code=ErrorCode.MESSENGER_ERROR,
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
    ) -> "MessengerError":
        details = _response_details(operation, response, max_response_chars)
        return cls(
            message=message or f"{operation} returned status {details['status_code']}",
            details=details,
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


class OrderException(AppException):
    """Base exception for order placement and cancellation errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        order_id: str | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=400,
            details=details
        )
        if order_id:
            self.details["order_id"] = order_id


class OrderValidationError(ValidationException):
    """Raised when a customer field of an order is missing or malformed"""

    def __init__(self, field: str, message: str):
        super().__init__(
            message=message,
            field=field,
            error_code=ErrorCode.INVALID_ORDER_FIELD,
        )


class EmptyOrderError(OrderException):
    """Raised when no valid line item remains after sanitizing"""

    def __init__(self):
        super().__init__(
            message="Order has no valid line items",
            error_code=ErrorCode.NO_ITEMS,
        )


class OrderNotFoundError(OrderException):
    """Raised when the commerce backend does not know the order"""

    def __init__(self, order_id: str):
        super().__init__(
            message=f"Order not found: {order_id}",
            error_code=ErrorCode.ORDER_NOT_FOUND,
            order_id=order_id,
        )
        self.status_code = 404


class CancelWindowExceededError(OrderException):
    """Raised when an order is too old (or of unknown age) to cancel"""

    def __init__(self, order_id: str, age_hours: float | None, window_hours: int):
        super().__init__(
            message=f"Order {order_id} can no longer be cancelled",
            error_code=ErrorCode.CANCEL_WINDOW_EXCEEDED,
            order_id=order_id,
            details={
                "age_hours": round(age_hours, 2) if age_hours is not None else None,
                "window_hours": window_hours,
            }
        )
