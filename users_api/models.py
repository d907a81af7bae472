"""Domain models for the users service."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional


@dataclass(frozen=True)
class User:
    """Represents a user account stored in the users database."""

    id: int
    name: str
    email: str
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class UserPatch:
    """Partial update for a user; ``None`` marks a field as not supplied."""

    name: Optional[str] = None
    email: Optional[str] = None

    def changes(self) -> Dict[str, str]:
        supplied: Dict[str, str] = {}
        if self.name is not None:
            supplied["name"] = self.name
        if self.email is not None:
            supplied["email"] = self.email
        return supplied

    def is_empty(self) -> bool:
        return not self.changes()


__all__ = ["User", "UserPatch"]
