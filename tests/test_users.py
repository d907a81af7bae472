"""Behaviour of the user service on top of a real SQLite store."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator

import pytest

from users_api.database import Database
from users_api.errors import (
    ConflictError,
    EmailAlreadyExistsError,
    ErrorKind,
    UserNotFoundError,
)
from users_api.models import UserPatch
from users_api.users import UserService


class TickingClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        value = self.now
        self.now += timedelta(seconds=1)
        return value


@pytest.fixture()
def database(tmp_path: Path) -> Iterator[Database]:
    db = Database(tmp_path / "users.sqlite3", clock=TickingClock())
    db.initialize()
    yield db
    db.close()


@pytest.fixture()
def service(database: Database) -> UserService:
    return UserService(database)


def test_end_to_end_lifecycle(service: UserService) -> None:
    ann = service.create_user("Ann", "ann@x.com")
    assert ann.id == 1
    assert (ann.name, ann.email) == ("Ann", "ann@x.com")
    assert ann.created_at == ann.updated_at

    with pytest.raises(EmailAlreadyExistsError) as excinfo:
        service.create_user("Bob", "ann@x.com")
    assert excinfo.value.kind is ErrorKind.EMAIL_EXISTS

    renamed = service.update_user(1, UserPatch(name="Ann2"))
    assert (renamed.id, renamed.name, renamed.email) == (1, "Ann2", "ann@x.com")
    assert renamed.created_at == ann.created_at
    assert renamed.updated_at > ann.updated_at

    unchanged = service.update_user(1, UserPatch())
    assert unchanged == renamed

    service.delete_user(1)
    with pytest.raises(UserNotFoundError):
        service.get_user(1)


def test_get_missing_user_raises_not_found(service: UserService) -> None:
    with pytest.raises(UserNotFoundError) as excinfo:
        service.get_user(999)

    assert excinfo.value.kind is ErrorKind.NOT_FOUND
    assert excinfo.value.user_id == 999
    assert excinfo.value.message == "User not found"


@pytest.mark.parametrize("name", ["Ann", "Bob", "Somebody Else"])
def test_duplicate_email_conflicts_regardless_of_name(service: UserService, name: str) -> None:
    service.create_user("Ann", "ann@x.com")

    with pytest.raises(ConflictError):
        service.create_user(name, "ann@x.com")

    assert [user.email for user in service.list_users()] == ["ann@x.com"]


def test_create_round_trips_through_the_store(service: UserService) -> None:
    created = service.create_user("Ann", "ann@x.com")

    assert service.get_user(created.id) == created


def test_update_with_current_values_does_not_write(service: UserService) -> None:
    ann = service.create_user("Ann", "ann@x.com")

    same = service.update_user(ann.id, UserPatch(name="Ann", email="ann@x.com"))

    assert same == ann
    assert service.get_user(ann.id).updated_at == ann.updated_at


def test_update_preserves_unspecified_fields(service: UserService) -> None:
    ann = service.create_user("Ann", "ann@x.com")

    moved = service.update_user(ann.id, UserPatch(email="ann@y.com"))

    assert moved.name == "Ann"
    assert moved.email == "ann@y.com"
    assert moved.created_at == ann.created_at
    assert moved.updated_at > ann.updated_at
    assert service.get_user_by_email("ann@x.com") is None


def test_self_email_update_is_not_a_conflict(service: UserService) -> None:
    ann = service.create_user("Ann", "ann@x.com")

    result = service.update_user(ann.id, UserPatch(name="Ann2", email="ann@x.com"))

    assert result.email == "ann@x.com"
    assert result.name == "Ann2"


def test_update_to_another_users_email_conflicts(service: UserService) -> None:
    service.create_user("Ann", "ann@x.com")
    bob = service.create_user("Bob", "bob@x.com")

    with pytest.raises(EmailAlreadyExistsError):
        service.update_user(bob.id, UserPatch(name="Robert", email="ann@x.com"))

    assert service.get_user(bob.id) == bob


def test_update_missing_user_raises_not_found(service: UserService) -> None:
    with pytest.raises(UserNotFoundError):
        service.update_user(5, UserPatch(name="Ghost"))


def test_oversized_ids_are_not_found(service: UserService) -> None:
    service.create_user("Ann", "ann@x.com")
    huge = 2**63

    with pytest.raises(UserNotFoundError):
        service.get_user(huge)
    with pytest.raises(UserNotFoundError):
        service.update_user(huge, UserPatch(name="Ghost"))
    with pytest.raises(UserNotFoundError):
        service.delete_user(huge)
    assert service.user_exists(huge) is False
    assert len(service.list_users()) == 1


def test_delete_is_terminal(service: UserService) -> None:
    ann = service.create_user("Ann", "ann@x.com")

    service.delete_user(ann.id)

    with pytest.raises(UserNotFoundError):
        service.get_user(ann.id)
    with pytest.raises(UserNotFoundError):
        service.delete_user(ann.id)
    assert service.user_exists(ann.id) is False


def test_deleted_email_can_be_registered_again(service: UserService) -> None:
    ann = service.create_user("Ann", "ann@x.com")
    service.delete_user(ann.id)

    again = service.create_user("Ann", "ann@x.com")

    assert again.id != ann.id


def test_get_user_by_email_returns_none_when_absent(service: UserService) -> None:
    assert service.get_user_by_email("nobody@x.com") is None


def test_list_users_is_newest_first(service: UserService) -> None:
    assert service.list_users() == []

    service.create_user("User 1", "user1@example.com")
    service.create_user("User 2", "user2@example.com")

    assert [user.name for user in service.list_users()] == ["User 2", "User 1"]


def test_user_exists(service: UserService) -> None:
    ann = service.create_user("Ann", "ann@x.com")

    assert service.user_exists(ann.id) is True
    assert service.user_exists(ann.id + 1) is False


def test_store_backstop_reports_conflict_when_lookup_misses(
    service: UserService,
    database: Database,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    service.create_user("Ann", "ann@x.com")
    monkeypatch.setattr(database, "fetch_user_by_email", lambda email: None)

    with pytest.raises(EmailAlreadyExistsError):
        service.create_user("Bob", "ann@x.com")


def test_store_faults_propagate_unchanged(
    service: UserService,
    database: Database,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    fault = sqlite3.OperationalError("database disk image is malformed")

    def broken() -> None:
        raise fault

    monkeypatch.setattr(database, "fetch_users", broken)

    with pytest.raises(sqlite3.OperationalError) as excinfo:
        service.list_users()

    assert excinfo.value is fault
