"""Business rules for the user resource.

``UserService`` enforces the email uniqueness invariant and turns store state
into typed outcomes. It holds nothing but the store handle it was given, never
logs, and never retries: not-found and conflict failures are raised where they
are detected, and store faults (``sqlite3.Error``) propagate untouched.
"""
from __future__ import annotations

from typing import List, Optional

from .database import Database
from .errors import EmailAlreadyExistsError, UserNotFoundError
from .models import User, UserPatch


class UserService:
    """Create, read, update and delete users on top of a :class:`Database`."""

    def __init__(self, database: Database) -> None:
        self._database = database

    def list_users(self) -> List[User]:
        """Return every user, newest first."""

        return self._database.fetch_users()

    def get_user(self, user_id: int) -> User:
        user = self._database.fetch_user(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self._database.fetch_user_by_email(email)

    def user_exists(self, user_id: int) -> bool:
        return self._database.fetch_user(user_id) is not None

    def create_user(self, name: str, email: str) -> User:
        """Create a user, rejecting an email that another user already holds."""

        with self._database.transaction():
            if self.get_user_by_email(email) is not None:
                raise EmailAlreadyExistsError(email)
            return self._database.insert_user(name, email)

    def update_user(self, user_id: int, patch: UserPatch) -> User:
        """Apply the supplied fields of ``patch``.

        A patch with no effective change returns the stored record without a
        write, so ``updated_at`` is left alone.
        """

        with self._database.transaction():
            current = self.get_user(user_id)

            changes = {
                field: value
                for field, value in patch.changes().items()
                if getattr(current, field) != value
            }
            if not changes:
                return current

            email = changes.get("email")
            if email is not None:
                owner = self.get_user_by_email(email)
                if owner is not None and owner.id != current.id:
                    raise EmailAlreadyExistsError(email)

            updated = self._database.update_user(user_id, changes)
            if updated is None:
                raise UserNotFoundError(user_id)
            return updated

    def delete_user(self, user_id: int) -> None:
        with self._database.transaction():
            self.get_user(user_id)
            self._database.delete_user(user_id)


__all__ = ["UserService"]
