from __future__ import annotations

from typing import List, Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass fixes the HTTP status code the transport answers with. The
    ``message`` is always safe to show to the client; ``errors`` itemizes
    individual rule violations where there is more than one.
    """

    status_code: int = 400

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        errors: Optional[List[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.errors = list(errors) if errors else []


class ValidationError(ServiceError):
    """Client input malformed (400)."""
    status_code = 400


class BadRequestError(ValidationError):
    """Required request fields are missing (400)."""
    pass


class AuthenticationError(ServiceError):
    """Bad credentials or no usable session (401)."""
    status_code = 401


class NotFoundError(ServiceError):
    """Resolved identity or resource has no backing record (404)."""
    status_code = 404


class ConflictError(ServiceError):
    """Uniqueness violation (409)."""
    status_code = 409


class DependencyError(ServiceError):
    """A store or the password hasher failed (500).

    The message is generic. The underlying cause is logged, never returned.
    """
    status_code = 500


__all__ = [
    "ServiceError",
    "ValidationError",
    "BadRequestError",
    "AuthenticationError",
    "NotFoundError",
    "ConflictError",
    "DependencyError",
]
