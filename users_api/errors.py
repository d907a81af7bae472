"""Error taxonomy shared by the user service and the HTTP layer."""
from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Machine-checkable classification of a failed user operation."""

    NOT_FOUND = "not_found"
    EMAIL_EXISTS = "email_exists"


class UserServiceError(Exception):
    """Base class for client-correctable user operation failures."""

    kind: ErrorKind

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UserNotFoundError(UserServiceError):
    """Raised when a user id does not match any stored record."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, user_id: int) -> None:
        super().__init__("User not found")
        self.user_id = user_id


class ConflictError(UserServiceError):
    """Raised when a write would violate a uniqueness constraint."""


class EmailAlreadyExistsError(ConflictError):
    kind = ErrorKind.EMAIL_EXISTS

    def __init__(self, email: str) -> None:
        super().__init__("Email already exists")
        self.email = email


__all__ = [
    "ConflictError",
    "EmailAlreadyExistsError",
    "ErrorKind",
    "UserNotFoundError",
    "UserServiceError",
]
