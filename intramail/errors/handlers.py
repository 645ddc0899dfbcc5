# =============================================================================
# intramail/errors/handlers.py
# Error Handling Utilities for the Streamlit consumer
# =============================================================================

from __future__ import annotations
import functools
from typing import Optional, Callable, TypeVar
import streamlit as st

from intramail.logging import get_logger
from .exceptions import IntramailError

logger = get_logger(__name__)

T = TypeVar("T")

GENERIC_USER_MESSAGE = "System unavailable. Please try again later."


def user_message_for(error: Exception) -> str:
    """Short, non-technical text for an error. Never exposes transport detail."""
    if isinstance(error, IntramailError):
        return error.user_message
    return GENERIC_USER_MESSAGE


def handle_error(
    error: Exception,
    show_user_message: bool = True,
    log_error: bool = True,
    user_message: Optional[str] = None,
) -> None:
    """
    Centralized error handling function.

    Args:
        error: The exception to handle
        show_user_message: Whether to display error to user via st.error
        log_error: Whether to log the error
        user_message: Custom message to show user (derived from the error if None)
    """
    message = user_message or user_message_for(error)

    if log_error:
        if isinstance(error, IntramailError):
            logger.warning(f"[{error.code}] {error.message}", extra={"details": error.details})
        else:
            logger.error(f"Unexpected error: {error}", exc_info=error)

    if show_user_message:
        st.error(message)


class ErrorContext:
    """
    Context manager for error handling with logging and user feedback.

    Usage:
        with ErrorContext("Sending message"):
            gateway.send(ctx, message)
    """

    def __init__(
        self,
        operation: str,
        recoverable: bool = True,
        show_success: bool = False,
        success_message: Optional[str] = None,
    ):
        self.operation = operation
        self.recoverable = recoverable
        self.show_success = show_success
        self.success_message = success_message

    def __enter__(self) -> ErrorContext:
        logger.debug(f"Starting: {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is not None:
            handle_error(exc_val)
            # Suppress exception if recoverable
            return self.recoverable and not (
                isinstance(exc_val, IntramailError) and not exc_val.recoverable
            )

        logger.debug(f"Completed: {self.operation}")
        if self.show_success:
            st.success(self.success_message or f"{self.operation} completed")
        return False


def error_boundary(default_return=None, error_message: Optional[str] = None):
    """
    Decorator that renders errors instead of raising them.

    Usage:
        @error_boundary(default_return=[], error_message="Could not load memos")
        def render_memo_board():
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., Optional[T]]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Optional[T]:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                handle_error(e, user_message=error_message)
                return default_return

        return wrapper

    return decorator
