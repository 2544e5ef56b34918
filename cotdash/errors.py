"""Exceptions raised by the backend client."""

from typing import Optional


class ApiError(Exception):
    """A backend call failed (transport error or non-2xx status)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AuthError(ApiError):
    """Login was rejected or returned no token."""


class ResponseShapeError(ApiError):
    """The backend answered with a payload none of the known shapes match."""
