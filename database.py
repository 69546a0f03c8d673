import enum
import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, UTC

from fastapi import Request

from exceptions import Internal

logger = logging.getLogger(__name__)

# Columns an event update may touch; everything else is owned by the store.
USER_ROLES = ("user", "admin")
EVENT_UPDATE_COLUMNS = ("title", "description", "date", "time", "location", "capacity", "price", "category", "image")


class Outcome(enum.Enum):
    """Result of a conditional registration update."""

    OK = "ok"
    EVENT_NOT_FOUND = "event_not_found"
    USER_NOT_FOUND = "user_not_found"
    ALREADY_REGISTERED = "already_registered"
    FULL = "full"
    NOT_REGISTERED = "not_registered"


def _new_id() -> str:
    return uuid.uuid4().hex


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _event_row(row) -> dict:
    data = dict(row)
    data["registered_users"] = json.loads(data["registered_users"])
    return data


def _user_row(row) -> dict:
    data = dict(row)
    data["registered_events"] = json.loads(data["registered_events"])
    return data


class Database:
    def __init__(self, db_name="events.db"):
        """
        Document store for the ``users`` and ``events`` collections on top of SQLite.

        Each row is one document; reference lists (an event's registrants, a
        user's registered events) are JSON arrays kept inside the row and
        edited in place with SQLite's JSON functions. A fresh connection is
        opened per operation, so one instance can be shared by every request.
        """
        self.db_name = db_name
        self.create_tables()

    @contextmanager
    def transaction(self, immediate=False):
        """Yield a connection inside a transaction; commit on success, roll back on error.

        ``immediate`` takes the write lock up front, which serialises
        read-modify-write sequences against concurrent writers.
        """
        conn = sqlite3.connect(self.db_name, timeout=10, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            if conn.in_transaction:
                conn.rollback()
            logger.exception("Store operation failed")
            raise Internal("Database operation failed") from exc
        except Exception:
            if conn.in_transaction:
                conn.rollback()
            raise
        finally:
            conn.close()

    def create_tables(self):
        """Create the collections if they do not exist yet."""
        with self.transaction() as conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    password TEXT NOT NULL,
                    role TEXT NOT NULL DEFAULT 'user' CHECK(role IN ('admin', 'user')),
                    registered_events TEXT NOT NULL DEFAULT '[]',
                    created_at TEXT NOT NULL
                )
            ''')
            conn.execute('''
                CREATE TABLE IF NOT EXISTS events (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    date TEXT NOT NULL,
                    time TEXT NOT NULL,
                    location TEXT NOT NULL,
                    capacity INTEGER NOT NULL CHECK(capacity >= 1),
                    price REAL NOT NULL CHECK(price >= 0),
                    organizer TEXT NOT NULL,
                    registered_users TEXT NOT NULL DEFAULT '[]',
                    category TEXT NOT NULL,
                    image TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL
                )
            ''')

    # -------------------------------
    # Users
    # -------------------------------
    def add_user(self, name, email, password, role="user"):
        """Insert a user and return its id, or None if the email is taken."""
        if role not in USER_ROLES:
            raise ValueError(f"Unknown role: {role!r}")
        user_id = _new_id()
        with self.transaction(immediate=True) as conn:
            if conn.execute('SELECT 1 FROM users WHERE email = ?', (email,)).fetchone() is not None:
                return None
            conn.execute('''
                INSERT INTO users (id, name, email, password, role, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            ''', (user_id, name, email, password, role, _now()))
        return user_id

    def get_user(self, user_id):
        """Retrieve a user by ID."""
        with self.transaction() as conn:
            row = conn.execute('SELECT * FROM users WHERE id = ?', (user_id,)).fetchone()
        return _user_row(row) if row else None

    def get_user_by_email(self, email):
        """Retrieve a user by email."""
        with self.transaction() as conn:
            row = conn.execute('SELECT * FROM users WHERE email = ?', (email,)).fetchone()
        return _user_row(row) if row else None

    def list_registered_events(self, user_id):
        """Resolve a user's registered events to id/title/date, in registration order."""
        with self.transaction() as conn:
            rows = conn.execute('''
                SELECT e.id, e.title, e.date FROM users u, json_each(u.registered_events) j
                JOIN events e ON e.id = j.value
                WHERE u.id = ?
                ORDER BY j.key
            ''', (user_id,)).fetchall()
        return [dict(r) for r in rows]

    # -------------------------------
    # Events
    # -------------------------------
    def add_event(self, fields, organizer):
        """Insert an event document and return it as stored."""
        event_id = _new_id()
        with self.transaction() as conn:
            conn.execute('''
                INSERT INTO events (id, title, description, date, time, location, capacity, price,
                                    organizer, category, image, created_at)
                VALUES (:id, :title, :description, :date, :time, :location, :capacity, :price,
                        :organizer, :category, :image, :created_at)
            ''', {**fields, "id": event_id, "organizer": organizer, "created_at": _now()})
            row = conn.execute('SELECT * FROM events WHERE id = ?', (event_id,)).fetchone()
        return _event_row(row)

    def get_event(self, event_id):
        """Retrieve an event by ID."""
        with self.transaction() as conn:
            row = conn.execute('SELECT * FROM events WHERE id = ?', (event_id,)).fetchone()
        return _event_row(row) if row else None

    def list_events(self):
        """Retrieve all events by date, with the organizer's name and email joined in."""
        with self.transaction() as conn:
            rows = conn.execute('''
                SELECT e.*, u.name AS organizer_name, u.email AS organizer_email
                FROM events e LEFT JOIN users u ON u.id = e.organizer
                ORDER BY e.date ASC, e.created_at ASC
            ''').fetchall()
        return [_event_row(r) for r in rows]

    def get_user_summaries(self, user_ids):
        """Resolve user ids to id/name/email, keyed by id. Unknown ids are skipped."""
        if not user_ids:
            return {}
        placeholders = ", ".join("?" for _ in user_ids)
        with self.transaction() as conn:
            rows = conn.execute(
                f'SELECT id, name, email FROM users WHERE id IN ({placeholders})', list(user_ids)
            ).fetchall()
        return {r["id"]: dict(r) for r in rows}

    def update_event(self, event_id, updates):
        """Replace the given fields of an event.

        A capacity change only applies if it still fits the current
        registrants; returns False when the event is gone or the guard fails.
        """
        unknown = set(updates) - set(EVENT_UPDATE_COLUMNS)
        if unknown:
            raise ValueError(f"Cannot update columns: {', '.join(sorted(unknown))}")
        if not updates:
            return self.get_event(event_id) is not None
        set_clause = ", ".join(f"{k} = :{k}" for k in updates.keys())
        where = "id = :event_id"
        if "capacity" in updates:
            where += " AND json_array_length(registered_users) <= :capacity"
        with self.transaction() as conn:
            cursor = conn.execute(f'UPDATE events SET {set_clause} WHERE {where}', {**updates, "event_id": event_id})
            return cursor.rowcount > 0

    def delete_event(self, event_id):
        """Delete an event and drop its id from every registrant's registered events."""
        with self.transaction(immediate=True) as conn:
            row = conn.execute('SELECT registered_users FROM events WHERE id = ?', (event_id,)).fetchone()
            if row is None:
                return False
            for user_id in json.loads(row["registered_users"]):
                self._remove_user_event(conn, user_id, event_id)
            conn.execute('DELETE FROM events WHERE id = ?', (event_id,))
            return True

    # -------------------------------
    # Registration
    # -------------------------------
    def register_user(self, event_id, user_id):
        """Append ``user_id`` to the event and ``event_id`` to the user in one transaction.

        The event side is a single conditional update, so the capacity and
        duplicate checks cannot race with another registration.
        """
        params = {"event_id": event_id, "user_id": user_id}
        with self.transaction(immediate=True) as conn:
            if conn.execute('SELECT 1 FROM users WHERE id = ?', (user_id,)).fetchone() is None:
                return Outcome.USER_NOT_FOUND
            cursor = conn.execute('''
                UPDATE events
                SET registered_users = json_insert(registered_users, '$[#]', :user_id)
                WHERE id = :event_id
                  AND json_array_length(registered_users) < capacity
                  AND NOT EXISTS (SELECT 1 FROM json_each(events.registered_users) WHERE value = :user_id)
            ''', params)
            if cursor.rowcount == 0:
                row = conn.execute('SELECT registered_users FROM events WHERE id = ?', (event_id,)).fetchone()
                if row is None:
                    return Outcome.EVENT_NOT_FOUND
                if user_id in json.loads(row["registered_users"]):
                    return Outcome.ALREADY_REGISTERED
                return Outcome.FULL
            conn.execute('''
                UPDATE users
                SET registered_events = json_insert(registered_events, '$[#]', :event_id)
                WHERE id = :user_id
                  AND NOT EXISTS (SELECT 1 FROM json_each(users.registered_events) WHERE value = :event_id)
            ''', params)
        return Outcome.OK

    def unregister_user(self, event_id, user_id):
        """Remove ``user_id`` from the event and ``event_id`` from the user in one transaction."""
        params = {"event_id": event_id, "user_id": user_id}
        with self.transaction(immediate=True) as conn:
            cursor = conn.execute('''
                UPDATE events
                SET registered_users = (
                    SELECT json_group_array(value) FROM json_each(events.registered_users) WHERE value != :user_id
                )
                WHERE id = :event_id
                  AND EXISTS (SELECT 1 FROM json_each(events.registered_users) WHERE value = :user_id)
            ''', params)
            if cursor.rowcount == 0:
                if conn.execute('SELECT 1 FROM events WHERE id = ?', (event_id,)).fetchone() is None:
                    return Outcome.EVENT_NOT_FOUND
                return Outcome.NOT_REGISTERED
            self._remove_user_event(conn, user_id, event_id)
        return Outcome.OK

    def list_registrants(self, event_id):
        """Resolve an event's registrants to id/name/email, in registration order."""
        with self.transaction() as conn:
            rows = conn.execute('''
                SELECT u.id, u.name, u.email FROM events e, json_each(e.registered_users) j
                JOIN users u ON u.id = j.value
                WHERE e.id = ?
                ORDER BY j.key
            ''', (event_id,)).fetchall()
        return [dict(r) for r in rows]

    @staticmethod
    def _remove_user_event(conn, user_id, event_id):
        conn.execute('''
            UPDATE users
            SET registered_events = (
                SELECT json_group_array(value) FROM json_each(users.registered_events) WHERE value != :event_id
            )
            WHERE id = :user_id
        ''', {"event_id": event_id, "user_id": user_id})


def get_db(request: Request) -> Database:
    """FastAPI dependency returning the store opened by the app lifespan."""
    return request.app.state.db
