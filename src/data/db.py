"""
Agenda Assistant — Task and User Database.

Tasks and users persist in SQLite. Every operation opens its own short-lived
connection, so a webhook call and a scheduler tick never share one.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from pathlib import Path

from src.core.time_utils import from_db, minute_window, to_db, utc_now
from src.data.models import Task, User

logger = logging.getLogger(__name__)

# Columns update_task() is allowed to touch
_UPDATABLE_TASK_FIELDS = ("description", "due_at", "reminder_at", "meta")
_TIMESTAMP_FIELDS = {"due_at", "reminder_at"}


class TaskDB:
    """SQLite-backed storage for reminder tasks and their fired markers."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Create the tasks and reminder_log tables if they don't exist."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id     INTEGER NOT NULL,
                    description TEXT    NOT NULL,
                    due_at      TEXT    NOT NULL,
                    reminder_at TEXT    NOT NULL,
                    meta        TEXT,
                    created_at  TEXT    NOT NULL,
                    updated_at  TEXT    NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_tasks_reminder_at ON tasks (reminder_at)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_tasks_user_due ON tasks (user_id, due_at)"
            )
            # One row per reminder actually fired
            conn.execute("""
                CREATE TABLE IF NOT EXISTS reminder_log (
                    task_id          INTEGER NOT NULL,
                    scheduled_minute TEXT    NOT NULL,
                    fired_at         TEXT    NOT NULL,
                    PRIMARY KEY (task_id, scheduled_minute)
                )
            """)
        logger.debug("Tasks table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=row["id"],
            user_id=row["user_id"],
            description=row["description"],
            due_at=from_db(row["due_at"]),
            reminder_at=from_db(row["reminder_at"]),
            meta=row["meta"],
            created_at=from_db(row["created_at"]),
            updated_at=from_db(row["updated_at"]),
        )

    def add_task(
        self,
        user_id: int,
        description: str,
        due_at: datetime,
        reminder_at: datetime,
        meta: str | None = None,
    ) -> Task:
        """Insert a new task owned by user_id."""
        now = to_db(utc_now())
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO tasks
                    (user_id, description, due_at, reminder_at, meta, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (user_id, description, to_db(due_at), to_db(reminder_at), meta, now, now),
            )
            task_id = cursor.lastrowid

        logger.info("Task added: #%d for user %d due %s", task_id, user_id, to_db(due_at))
        return self.get_task(task_id)

    def get_task(self, task_id: int, user_id: int | None = None) -> Task | None:
        """Fetch a single task, optionally only if owned by user_id."""
        query = "SELECT * FROM tasks WHERE id = ?"
        params: list = [task_id]
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def update_task(self, task_id: int, user_id: int, fields: dict) -> Task | None:
        """Apply a partial update in a single write keyed by task id and owner.

        Returns the updated task, or None if no task matched.
        """
        unknown = set(fields) - set(_UPDATABLE_TASK_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update task fields: {sorted(unknown)}")

        assignments: list[str] = []
        params: list = []
        for name in _UPDATABLE_TASK_FIELDS:
            if name not in fields:
                continue
            value = fields[name]
            assignments.append(f"{name} = ?")
            params.append(to_db(value) if name in _TIMESTAMP_FIELDS else value)
        assignments.append("updated_at = ?")
        params.append(to_db(utc_now()))
        params.extend([task_id, user_id])

        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE tasks SET {', '.join(assignments)} WHERE id = ? AND user_id = ?",
                params,
            )
        if cursor.rowcount == 0:
            return None
        logger.info("Task #%d updated: %s", task_id, ", ".join(sorted(fields)) or "(no fields)")
        return self.get_task(task_id)

    def list_upcoming(
        self, user_id: int, now: datetime, until: datetime | None = None,
    ) -> list[Task]:
        """Return the user's tasks due after now (and up to until), soonest first."""
        query = "SELECT * FROM tasks WHERE user_id = ? AND due_at > ?"
        params: list = [user_id, to_db(now)]
        if until is not None:
            query += " AND due_at <= ?"
            params.append(to_db(until))
        query += " ORDER BY due_at, id"

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_task(r) for r in rows]

    def list_for_user(self, user_id: int) -> list[Task]:
        """Return every task owned by user_id, ordered by due date."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM tasks WHERE user_id = ? ORDER BY due_at, id", (user_id,),
            ).fetchall()
        return [self._row_to_task(r) for r in rows]

    def get_due_at(self, moment: datetime) -> list[Task]:
        """Return all tasks whose reminder falls within the minute of moment."""
        start, end = minute_window(moment)
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM tasks WHERE reminder_at >= ? AND reminder_at < ? ORDER BY id",
                (to_db(start), to_db(end)),
            ).fetchall()
        return [self._row_to_task(r) for r in rows]

    def claim_reminder(self, task_id: int, scheduled_minute: datetime) -> bool:
        """Record that the reminder for (task, minute) fired.

        Returns False if it was already claimed by an earlier sweep.
        """
        start, _ = minute_window(scheduled_minute)
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO reminder_log (task_id, scheduled_minute, fired_at)
                VALUES (?, ?, ?)
                """,
                (task_id, to_db(start), to_db(utc_now())),
            )
        return cursor.rowcount > 0


class UserDB:
    """SQLite-backed storage for WhatsApp users."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from src.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
                    phone               TEXT    NOT NULL UNIQUE,
                    display_name        TEXT    NOT NULL,
                    last_contact_at     TEXT,
                    subscription_active INTEGER NOT NULL DEFAULT 0,
                    created_at          TEXT    NOT NULL
                )
            """)
        logger.debug("Users table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            phone=row["phone"],
            display_name=row["display_name"],
            last_contact_at=from_db(row["last_contact_at"]),
            subscription_active=bool(row["subscription_active"]),
            created_at=from_db(row["created_at"]),
        )

    def add_user(self, phone: str, display_name: str) -> User:
        """Register a new user. Raises sqlite3.IntegrityError on a duplicate phone."""
        now = to_db(utc_now())
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO users (phone, display_name, created_at) VALUES (?, ?, ?)",
                (phone, display_name, now),
            )
            user_id = cursor.lastrowid
        logger.info("User registered: %d %s '%s'", user_id, phone, display_name)
        return self.get_user(user_id)

    def find_or_create(self, phone: str, display_name: str) -> User:
        """Return the user with this phone, creating it on first contact."""
        user = self.get_user_by_phone(phone)
        if user is not None:
            return user
        try:
            return self.add_user(phone, display_name or phone)
        except sqlite3.IntegrityError:
            # A concurrent webhook call registered the same phone first
            return self.get_user_by_phone(phone)

    def get_user(self, user_id: int) -> User | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_user_by_phone(self, phone: str) -> User | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE phone = ?", (phone,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def touch_last_contact(self, user_id: int, moment: datetime) -> None:
        """Record the time of the user's latest interaction."""
        with self._connect() as conn:
            conn.execute(
                "UPDATE users SET last_contact_at = ? WHERE id = ?",
                (to_db(moment), user_id),
            )
        logger.debug("Last contact for user %d set to %s", user_id, to_db(moment))

    def set_subscription_active(self, user_id: int, active: bool) -> bool:
        """Flip the subscription flag. Returns False if the user doesn't exist."""
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE users SET subscription_active = ? WHERE id = ?",
                (int(active), user_id),
            )
        updated = cursor.rowcount > 0
        if updated:
            logger.info("Subscription for user %d set to %s", user_id, active)
        return updated

    def list_users(self) -> list[User]:
        """Return all registered users."""
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY created_at, id").fetchall()
        return [self._row_to_user(r) for r in rows]
