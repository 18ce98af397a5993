"""Core error handling."""

from saferoute.core.exceptions import (
    APIException,
    ValidationException,
    GeographicBoundsException,
    ResourceNotFoundException,
    ServiceUnavailableException,
    register_exception_handlers,
    sanitize_error_message,
)

__all__ = [
    "APIException",
    "ValidationException",
    "GeographicBoundsException",
    "ResourceNotFoundException",
    "ServiceUnavailableException",
    "register_exception_handlers",
    "sanitize_error_message",
]
