"""Error taxonomy and result type shared by the orchestrators.

Gateway adapters raise :class:`AutopayError` subclasses. Orchestrators catch
them at their boundary and hand back a :class:`Result`, so an expected failure
(a declined redemption, a paused mandate) never escapes as an exception.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ErrorCategory(str, Enum):
    TRANSPORT = "transport"
    GATEWAY = "gateway"
    PRECONDITION = "precondition"
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"


class ErrorAction(str, Enum):
    """What a caller should do next."""

    RETRY = "retry"
    TERMINAL = "terminal"


class ErrorCode(str, Enum):
    GATEWAY_UNREACHABLE = "GATEWAY_UNREACHABLE"
    GATEWAY_TIMEOUT = "GATEWAY_TIMEOUT"
    GATEWAY_ERROR = "GATEWAY_ERROR"
    GATEWAY_UNAUTHORIZED = "GATEWAY_UNAUTHORIZED"
    INVALID_GATEWAY_RESPONSE = "INVALID_GATEWAY_RESPONSE"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    SUBSCRIPTION_NOT_FOUND = "SUBSCRIPTION_NOT_FOUND"
    SUBSCRIPTION_NOT_ACTIVE = "SUBSCRIPTION_NOT_ACTIVE"
    SUBSCRIPTION_TERMINAL = "SUBSCRIPTION_TERMINAL"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    DUPLICATE_SUBSCRIPTION = "DUPLICATE_SUBSCRIPTION"
    ORDER_NOT_EXECUTABLE = "ORDER_NOT_EXECUTABLE"
    ORDER_SUBSCRIPTION_MISMATCH = "ORDER_SUBSCRIPTION_MISMATCH"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_PAUSE_WINDOW = "INVALID_PAUSE_WINDOW"
    INVALID_WEBHOOK_PAYLOAD = "INVALID_WEBHOOK_PAYLOAD"
    WEBHOOK_UNAUTHORIZED = "WEBHOOK_UNAUTHORIZED"


_DEFAULT_ACTIONS = {
    ErrorCategory.TRANSPORT: ErrorAction.RETRY,
    ErrorCategory.GATEWAY: ErrorAction.TERMINAL,
    ErrorCategory.PRECONDITION: ErrorAction.TERMINAL,
    ErrorCategory.VALIDATION: ErrorAction.TERMINAL,
    ErrorCategory.AUTHENTICATION: ErrorAction.TERMINAL,
}


class AutopayError(Exception):
    """Structured failure carrying enough detail for a UI to pick a next step."""

    def __init__(
        self,
        code: ErrorCode | str,
        message: str,
        category: ErrorCategory,
        action: ErrorAction | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code.value if isinstance(code, ErrorCode) else code
        self.message = message
        self.category = category
        self.action = action or _DEFAULT_ACTIONS[category]
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "category": self.category.value,
            "message": self.message,
            "action": self.action.value,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class PreconditionError(AutopayError):
    def __init__(self, code: ErrorCode, message: str, details: dict[str, Any] | None = None):
        super().__init__(code, message, ErrorCategory.PRECONDITION, details=details)


class ValidationError(AutopayError):
    def __init__(self, code: ErrorCode, message: str, details: dict[str, Any] | None = None):
        super().__init__(code, message, ErrorCategory.VALIDATION, details=details)


class GatewayError(AutopayError):
    """Base for anything raised by a gateway adapter."""


class GatewayTransportError(GatewayError):
    def __init__(self, message: str, code: ErrorCode = ErrorCode.GATEWAY_UNREACHABLE):
        super().__init__(code, message, ErrorCategory.TRANSPORT, ErrorAction.RETRY)


class GatewayTimeoutError(GatewayTransportError):
    def __init__(self, message: str):
        super().__init__(message, ErrorCode.GATEWAY_TIMEOUT)


class GatewayResponseError(GatewayError):
    """The gateway answered with an explicit error."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
        action: ErrorAction = ErrorAction.TERMINAL,
    ):
        super().__init__(code, message, ErrorCategory.GATEWAY, action, details)
        self.status_code = status_code


@dataclass
class Result(Generic[T]):
    """Outcome of an orchestrator operation: a value or an error, never both."""

    value: T | None = None
    error: AutopayError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: AutopayError) -> "Result[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        """Return the value or raise the carried error."""
        if self.error is not None:
            raise self.error
        assert self.value is not None
        return self.value
