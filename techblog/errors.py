"""Exceptions raised by the service layer.

Each error carries the HTTP status the API renders it with.
"""


class ServiceError(Exception):
    """Base exception for rejected operations."""

    status_code = 400

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class AuthenticationError(ServiceError):
    """Raised when no valid login session is present."""

    status_code = 401


class PermissionDenied(ServiceError):
    """Raised when the current user may not perform the operation."""

    status_code = 403


class NotFoundError(ServiceError):
    """Raised when a referenced record does not exist."""

    status_code = 404


class ConflictError(ServiceError):
    """Raised on duplicates and invalid state transitions."""


class PaymentError(ServiceError):
    """Raised when a payment channel is misconfigured or a gateway call fails."""
