# =============================================================================
# intramail/errors/__init__.py
# Centralized Error Handling for the Intramail client
# =============================================================================

from .exceptions import (
    IntramailError,
    UnauthenticatedError,
    ValidationFailedError,
    NotFoundError,
    TransportUnavailableError,
    MalformedResponseError,
    SystemUnavailableError,
    ConfigurationError,
)

__all__ = [
    "IntramailError",
    "UnauthenticatedError",
    "ValidationFailedError",
    "NotFoundError",
    "TransportUnavailableError",
    "MalformedResponseError",
    "SystemUnavailableError",
    "ConfigurationError",
]
