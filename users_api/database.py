"""SQLite-backed persistence for user records."""
from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator, List, Mapping, Optional, Sequence, Union

from .errors import EmailAlreadyExistsError
from .models import User

MEMORY_PATH = ":memory:"

_UPDATABLE_COLUMNS = ("name", "email")

# Bounds of SQLite's signed 64-bit INTEGER; no stored id can fall outside them.
MIN_ROW_ID = -(2**63)
MAX_ROW_ID = 2**63 - 1

DatabasePath = Union[Path, str]


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> DatabasePath:
    """Resolve the on-disk path for the users database."""

    if env_value == MEMORY_PATH:
        return MEMORY_PATH
    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "users.sqlite3").resolve(strict=False)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    # Fixed width keeps lexical order equal to chronological order in SQL.
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _is_email_conflict(exc: sqlite3.IntegrityError) -> bool:
    return "users.email" in str(exc)


def _is_storable_id(user_id: int) -> bool:
    return MIN_ROW_ID <= user_id <= MAX_ROW_ID


class Database:
    """SQLite handle that owns all persisted user state.

    One connection is opened per handle and shared between threads. Every
    statement runs under an internal re-entrant lock, so callers never need
    locking of their own. The handle must be opened (``open()`` or ``with``)
    before queries are issued and closed at shutdown.
    """

    def __init__(
        self,
        path: DatabasePath,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._path: DatabasePath = path if str(path) == MEMORY_PATH else Path(path)
        self._clock = clock or _current_timestamp
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._transaction_depth = 0

    @property
    def path(self) -> DatabasePath:
        return self._path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def open(self) -> "Database":
        with self._lock:
            if self._conn is None:
                if isinstance(self._path, Path):
                    _ensure_directory(self._path)
                self._conn = self._connect()
        return self

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "Database":
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _connect(self) -> sqlite3.Connection:
        # isolation_level=None leaves transaction control to transaction().
        conn = sqlite3.connect(str(self._path), check_same_thread=False, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        if isinstance(self._path, Path):
            conn.execute("PRAGMA journal_mode = WAL")
        return conn

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database is not open. Call open() before issuing queries.")
        return self._conn

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        self.open()
        with self._lock:
            self._connection().executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_users_created_at ON users(created_at);
                """
            )

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed statements atomically.

        Nested scopes join the outermost transaction. ``BEGIN IMMEDIATE`` takes
        the write lock up front so reads made inside the scope stay valid until
        the commit, including against other processes sharing the file.
        """

        with self._lock:
            conn = self._connection()
            if self._transaction_depth:
                self._transaction_depth += 1
                try:
                    yield conn
                finally:
                    self._transaction_depth -= 1
                return

            conn.execute("BEGIN IMMEDIATE")
            self._transaction_depth = 1
            try:
                yield conn
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")
            finally:
                self._transaction_depth = 0

    # ------------------------------------------------------------------
    # User rows
    # ------------------------------------------------------------------
    def fetch_user(self, user_id: int) -> Optional[User]:
        if not _is_storable_id(user_id):
            return None
        with self._lock:
            row = self._connection().execute(
                "SELECT * FROM users WHERE id = ?", (user_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def fetch_user_by_email(self, email: str) -> Optional[User]:
        with self._lock:
            row = self._connection().execute(
                "SELECT * FROM users WHERE email = ?", (email,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def fetch_users(self) -> List[User]:
        with self._lock:
            rows = self._connection().execute(
                "SELECT * FROM users ORDER BY created_at DESC, id DESC"
            ).fetchall()
        return [self._row_to_user(row) for row in rows]

    def insert_user(self, name: str, email: str) -> User:
        """Insert a user and return the row exactly as stored."""

        stamp = _serialize_datetime(self._clock())
        try:
            rows = self._execute_returning(
                """
                INSERT INTO users (name, email, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                RETURNING *
                """,
                (name, email, stamp, stamp),
            )
        except sqlite3.IntegrityError as exc:
            if _is_email_conflict(exc):
                raise EmailAlreadyExistsError(email) from exc
            raise

        if not rows:
            raise RuntimeError("Failed to load user after creation")
        return self._row_to_user(rows[0])

    def update_user(self, user_id: int, changes: Mapping[str, str]) -> Optional[User]:
        """Write the supplied columns and stamp ``updated_at``.

        Returns ``None`` when no row has ``user_id``. ``updated_at`` never moves
        backwards, even if the clock does.
        """

        unknown = set(changes) - set(_UPDATABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Unsupported user columns: {', '.join(sorted(unknown))}")
        if not _is_storable_id(user_id):
            return None
        if not changes:
            return self.fetch_user(user_id)

        assignments: List[str] = []
        values: List[object] = []
        for column in _UPDATABLE_COLUMNS:
            if column not in changes:
                continue
            assignments.append(f"{column} = ?")
            values.append(changes[column])
        assignments.append("updated_at = MAX(?, updated_at)")
        values.extend([_serialize_datetime(self._clock()), user_id])
        query = f"UPDATE users SET {', '.join(assignments)} WHERE id = ? RETURNING *"

        try:
            rows = self._execute_returning(query, values)
        except sqlite3.IntegrityError as exc:
            if _is_email_conflict(exc):
                raise EmailAlreadyExistsError(str(changes.get("email", ""))) from exc
            raise

        if not rows:
            return None
        return self._row_to_user(rows[0])

    def delete_user(self, user_id: int) -> bool:
        if not _is_storable_id(user_id):
            return False
        with self._lock:
            cursor = self._connection().execute("DELETE FROM users WHERE id = ?", (user_id,))
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _execute_returning(self, query: str, params: Sequence[object]) -> List[sqlite3.Row]:
        # Drain the cursor so the statement completes before the lock is released.
        with self._lock:
            return self._connection().execute(query, params).fetchall()

    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=int(row["id"]),
            name=str(row["name"]),
            email=str(row["email"]),
            created_at=_parse_datetime(str(row["created_at"])),
            updated_at=_parse_datetime(str(row["updated_at"])),
        )


__all__ = ["Database", "MEMORY_PATH", "resolve_database_path"]
