# =============================================================================
# intramail/services/base_service.py
# Result wrapper shared by the consumer-facing services
# =============================================================================

from __future__ import annotations
from abc import ABC
from typing import Optional, Dict, Any, Callable
from dataclasses import dataclass

from intramail.logging import get_logger, LogContext
from intramail.errors import IntramailError
from intramail.errors.handlers import GENERIC_USER_MESSAGE, handle_error


@dataclass
class ServiceResult:
    """
    Outcome of one mailbox operation as the UI sees it.

    ``error`` is short text staff can read as-is; ``error_code`` and
    ``metadata`` carry the IntramailError code and details for the logs.
    """
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def ok(cls, data: Any = None) -> ServiceResult:
        return cls(success=True, data=data)

    @classmethod
    def from_exception(cls, e: Exception) -> ServiceResult:
        if isinstance(e, IntramailError):
            return cls(success=False, error=e.user_message, error_code=e.code, metadata=e.details)
        return cls(success=False, error=GENERIC_USER_MESSAGE, error_code="EXCEPTION")


class BaseService(ABC):
    """Logger plus the call wrapper that turns raised errors into ServiceResults."""

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    def log_operation(self, operation: str) -> LogContext:
        return LogContext(self.logger, operation)

    def safe_execute(self, operation: str, func: Callable[..., Any], *args, **kwargs) -> ServiceResult:
        """
        Run ``func`` and wrap its return value or error.

        IntramailErrors are expected outcomes (bad password, offline upload)
        and are logged as warnings. Anything else is logged with a traceback
        and reported with the generic message.
        """
        with self.log_operation(operation):
            try:
                return ServiceResult.ok(func(*args, **kwargs))
            except IntramailError as e:
                handle_error(e, show_user_message=False)
                return ServiceResult.from_exception(e)
            except Exception as e:
                self.logger.error(f"{operation} failed: {e}", exc_info=True)
                return ServiceResult.from_exception(e)
