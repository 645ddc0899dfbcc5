# =============================================================================
# intramail/errors/exceptions.py
# Custom Exception Hierarchy for the Intramail sync layer
# =============================================================================

from typing import Optional, Dict, Any


class IntramailError(Exception):
    """
    Base exception for all Intramail errors.

    Attributes:
        message: Technical description, used for logging
        code: Machine-readable error code (e.g., "AUTH_001")
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from
        user_message: Short, non-technical text safe to show to staff
    """

    default_user_message = "Something went wrong. Please try again."

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
        user_message: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "IM_000"
        self.details = details or {}
        self.recoverable = recoverable
        self.user_message = user_message or self.default_user_message

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "user_message": self.user_message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# AUTHENTICATION
# =============================================================================

class UnauthenticatedError(IntramailError):
    """Raised on a credential mismatch. Never triggers a local fallback."""

    default_user_message = "Invalid credentials. Please try again."

    def __init__(self, message: str = "Invalid credentials", username: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if username:
            details["username"] = username

        super().__init__(
            message=message,
            code="AUTH_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# DATA LAYER EXCEPTIONS
# =============================================================================

class ValidationFailedError(IntramailError):
    """Raised when a payload is malformed. Always raised before any store mutation."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field

        kwargs.setdefault("user_message", message)
        super().__init__(
            message=message,
            code="VAL_001",
            details=details,
            **kwargs,
        )


class NotFoundError(IntramailError):
    """Raised when an entity is absent from both the remote and the mirror"""

    default_user_message = "The requested item could not be found."

    def __init__(
        self,
        message: str,
        entity: Optional[str] = None,
        entity_id: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if entity:
            details["entity"] = entity
        if entity_id:
            details["entity_id"] = entity_id

        super().__init__(
            message=message,
            code="DATA_404",
            details=details,
            recoverable=False,
            **kwargs,
        )


# =============================================================================
# TRANSPORT EXCEPTIONS
# =============================================================================

class TransportUnavailableError(IntramailError):
    """Raised when the remote cannot be reached in time. Triggers local fallback."""

    default_user_message = "The server is unreachable. Working offline."

    def __init__(
        self,
        message: str,
        action: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if action:
            details["action"] = action
        code = kwargs.pop("code", "NET_001")

        super().__init__(
            message=message,
            code=code,
            details=details,
            **kwargs,
        )


class MalformedResponseError(TransportUnavailableError):
    """Raised when the remote answers with something that is not the expected JSON"""

    def __init__(self, message: str, action: Optional[str] = None, **kwargs):
        super().__init__(message, action=action, code="NET_002", **kwargs)


class SystemUnavailableError(IntramailError):
    """Raised when the remote failed and no local equivalent exists"""

    default_user_message = "System unavailable. Please try again later."

    def __init__(self, message: str, operation: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation

        super().__init__(
            message=message,
            code="NET_003",
            details=details,
            **kwargs,
        )


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(IntramailError):
    """Raised when configuration is invalid or missing"""

    default_user_message = "The client is misconfigured. Please contact ICT."

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )
