"""SQLite-backed persistence for users and the request activity log."""
from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Tuple

from .models import LogEntry, Stats, User

logger = logging.getLogger("userdesk.database")

INITIAL_USERS: Tuple[Tuple[str, str, str], ...] = (
    ("John Doe", "john@example.com", "admin"),
    ("Jane Smith", "jane@example.com", "user"),
    ("Bob Johnson", "bob@example.com", "user"),
)

DEFAULT_ROLE = "user"
DEFAULT_LOG_LIMIT = 100
RECENT_LOG_WINDOW = timedelta(hours=1)


class StorageError(RuntimeError):
    """Base class for failures raised by the storage layer."""


class StorageUnavailable(StorageError):
    """The database could not be opened or prepared, or is not open."""


class UniqueConstraintViolation(StorageError):
    """A write collided with a unique column (the user email)."""


class TransientQueryFailure(StorageError):
    """Any other storage error on a read or write path."""


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "userdesk.sqlite3").resolve(strict=False)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


@contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.IntegrityError as exc:
        if "UNIQUE" in str(exc).upper():
            raise UniqueConstraintViolation("A user with that email already exists") from exc
        raise TransientQueryFailure(f"Failed to {action}: {exc}") from exc
    except sqlite3.Error as exc:
        raise TransientQueryFailure(f"Failed to {action}: {exc}") from exc


class Database:
    """Single long-lived SQLite handle for users and activity logs.

    The handle is opened once at startup and closed at shutdown. ``open``
    creates the schema and seeds the initial users before any repository
    method becomes usable. The connection runs in autocommit mode so every
    statement is its own transaction. A lock serialises use of the shared
    connection so each statement and its lastrowid or rowcount read stay paired.
    """

    def __init__(
        self,
        path: Path,
        *,
        seed: bool = True,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._path = path
        self._seed = seed
        self._clock = clock or _current_timestamp
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._ready = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def is_open(self) -> bool:
        return self._ready

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def open(self) -> None:
        """Connect, create the tables and seed them. Safe to call twice."""

        if self._conn is not None:
            return

        try:
            _ensure_directory(self._path)
            conn = sqlite3.connect(str(self._path), check_same_thread=False, isolation_level=None)
        except (OSError, sqlite3.Error) as exc:
            logger.error("Error opening database at %s: %s", self._path, exc)
            raise StorageUnavailable(f"Unable to open database at {self._path}") from exc

        conn.row_factory = sqlite3.Row
        self._conn = conn
        logger.info("Connected to SQLite database at %s", self._path)

        try:
            self.ensure_schema()
            if self._seed:
                self.seed_if_empty()
        except StorageError as exc:
            self._conn = None
            conn.close()
            if isinstance(exc, StorageUnavailable):
                raise
            raise StorageUnavailable(f"Unable to prepare database at {self._path}") from exc

        self._ready = True

    def close(self) -> None:
        with self._lock:
            conn = self._conn
            self._ready = False
            self._conn = None
            if conn is None:
                return
            try:
                conn.close()
            except sqlite3.Error as exc:
                logger.error("Error closing database: %s", exc)
                return
        logger.info("Database connection closed")

    def ensure_schema(self) -> None:
        """Create the required tables if they do not already exist."""

        conn = self._connection(require_ready=False)
        try:
            with self._lock:
                conn.executescript(
                    """
                    CREATE TABLE IF NOT EXISTS users (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL,
                        email TEXT UNIQUE NOT NULL,
                        role TEXT NOT NULL DEFAULT 'user',
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    );

                    CREATE TABLE IF NOT EXISTS logs (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        level TEXT NOT NULL,
                        message TEXT NOT NULL,
                        endpoint TEXT,
                        user_agent TEXT,
                        ip_address TEXT,
                        created_at TEXT NOT NULL
                    );

                    CREATE INDEX IF NOT EXISTS idx_users_created_at ON users(created_at);
                    CREATE INDEX IF NOT EXISTS idx_logs_created_at ON logs(created_at);
                    """
                )
        except sqlite3.Error as exc:
            logger.error("Error creating tables: %s", exc)
            raise StorageUnavailable("Failed to create database schema") from exc
        logger.info("Users and logs tables ready")

    def seed_if_empty(self) -> int:
        """Insert the initial users when the table is empty.

        Returns the number of users inserted, which is zero on every run after
        the first.
        """

        conn = self._connection(require_ready=False)
        with self._lock, _translate_errors("seed users"):
            count = conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
            if count:
                logger.info("Users table already populated")
                return 0

            logger.info("Seeding initial user data")
            timestamp = _serialize_datetime(self._clock())
            conn.executemany(
                "INSERT INTO users (name, email, role, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                [(name, email, role, timestamp, timestamp) for name, email, role in INITIAL_USERS],
            )
        logger.info("Initial users seeded")
        return len(INITIAL_USERS)

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------
    def create_user(self, name: str, email: str, role: str = DEFAULT_ROLE) -> User:
        """Insert a user, relying on the email constraint to reject duplicates."""

        conn = self._connection()
        with self._lock, _translate_errors("create user"):
            created_at = self._clock()
            serialized = _serialize_datetime(created_at)
            cursor = conn.execute(
                "INSERT INTO users (name, email, role, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                (name, email, role, serialized, serialized),
            )
            user_id = int(cursor.lastrowid)
        return User(
            id=user_id,
            name=name,
            email=email,
            role=role,
            created_at=created_at,
            updated_at=created_at,
        )

    def get_all_users(self) -> List[User]:
        conn = self._connection()
        with self._lock, _translate_errors("list users"):
            rows = conn.execute("SELECT * FROM users ORDER BY created_at DESC, id DESC").fetchall()
        return [self._row_to_user(row) for row in rows]

    def get_user_by_id(self, user_id: int) -> Optional[User]:
        conn = self._connection()
        with self._lock, _translate_errors("load user"):
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def count_users(self) -> int:
        conn = self._connection()
        with self._lock, _translate_errors("count users"):
            return int(conn.execute("SELECT COUNT(*) FROM users").fetchone()[0])

    def update_user(self, user_id: int, name: str, email: str, role: str) -> Optional[User]:
        """Overwrite the mutable fields of a user.

        Returns ``None`` when no user has the given id.
        """

        conn = self._connection()
        with self._lock:
            with _translate_errors("update user"):
                cursor = conn.execute(
                    """
                    UPDATE users
                       SET name = ?, email = ?, role = ?, updated_at = ?
                     WHERE id = ?
                    """,
                    (name, email, role, _serialize_datetime(self._clock()), user_id),
                )
                changed = cursor.rowcount
            if changed == 0:
                return None
            return self.get_user_by_id(user_id)

    def delete_user(self, user_id: int) -> bool:
        conn = self._connection()
        with self._lock, _translate_errors("delete user"):
            cursor = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Activity log
    # ------------------------------------------------------------------
    def log_activity(
        self,
        level: str,
        message: str,
        endpoint: Optional[str] = None,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> int:
        """Append an entry to the activity log and return its id."""

        conn = self._connection()
        with self._lock, _translate_errors("record activity"):
            cursor = conn.execute(
                """
                INSERT INTO logs (level, message, endpoint, user_agent, ip_address, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (level, message, endpoint, user_agent, ip_address, _serialize_datetime(self._clock())),
            )
            return int(cursor.lastrowid)

    def get_logs(self, limit: int = DEFAULT_LOG_LIMIT) -> List[LogEntry]:
        # The limit is handed to SQLite untouched; a negative value means no limit.
        conn = self._connection()
        with self._lock, _translate_errors("load logs"):
            rows = conn.execute(
                "SELECT * FROM logs ORDER BY created_at DESC, id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._row_to_log_entry(row) for row in rows]

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------
    def get_stats(self) -> Stats:
        conn = self._connection()
        cutoff = _serialize_datetime(self._clock() - RECENT_LOG_WINDOW)
        with self._lock, _translate_errors("compute statistics"):
            total_users = conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
            admin_users = conn.execute("SELECT COUNT(*) FROM users WHERE role = 'admin'").fetchone()[0]
            total_logs = conn.execute("SELECT COUNT(*) FROM logs").fetchone()[0]
            recent_logs = conn.execute(
                "SELECT COUNT(*) FROM logs WHERE created_at > ?",
                (cutoff,),
            ).fetchone()[0]
        return Stats(
            total_users=int(total_users),
            admin_users=int(admin_users),
            total_logs=int(total_logs),
            recent_logs=int(recent_logs),
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _connection(self, *, require_ready: bool = True) -> sqlite3.Connection:
        conn = self._conn
        if conn is None or (require_ready and not self._ready):
            raise StorageUnavailable("Database is not open")
        return conn

    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=int(row["id"]),
            name=str(row["name"]),
            email=str(row["email"]),
            role=str(row["role"]),
            created_at=_parse_datetime(str(row["created_at"])),
            updated_at=_parse_datetime(str(row["updated_at"])),
        )

    def _row_to_log_entry(self, row: sqlite3.Row) -> LogEntry:
        return LogEntry(
            id=int(row["id"]),
            level=str(row["level"]),
            message=str(row["message"]),
            endpoint=row["endpoint"],
            user_agent=row["user_agent"],
            ip_address=row["ip_address"],
            created_at=_parse_datetime(str(row["created_at"])),
        )


__all__ = [
    "DEFAULT_LOG_LIMIT",
    "DEFAULT_ROLE",
    "Database",
    "INITIAL_USERS",
    "StorageError",
    "StorageUnavailable",
    "TransientQueryFailure",
    "UniqueConstraintViolation",
    "resolve_database_path",
]
