"""Domain errors raised by services and rendered by the API."""

from typing import Optional


class CrusoError(Exception):
    """Base error. Carries the HTTP status the API should answer with."""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(CrusoError, ValueError):
    status_code = 400


class AuthenticationError(CrusoError):
    status_code = 401


class NotFoundError(CrusoError):
    status_code = 404

