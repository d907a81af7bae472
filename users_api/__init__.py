"""Core package for the users CRUD API."""

from __future__ import annotations

from typing import Any

from .database import Database, resolve_database_path
from .errors import (
    ConflictError,
    EmailAlreadyExistsError,
    ErrorKind,
    UserNotFoundError,
    UserServiceError,
)
from .models import User, UserPatch
from .users import UserService


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the HTTP application."""

    from .api import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "ConflictError",
    "Database",
    "EmailAlreadyExistsError",
    "ErrorKind",
    "User",
    "UserNotFoundError",
    "UserPatch",
    "UserService",
    "UserServiceError",
    "create_app",
    "resolve_database_path",
]
