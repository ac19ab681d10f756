"""Record store over SQLite.

Records are addressed by *kind* (``user``, ``alert``, ``event``,
``alert_message``, ``event_message``). Every public method is a coroutine that
runs the blocking sqlite3 work in a worker thread, bounded by
``STORE_TIMEOUT_SECONDS``. Any driver error or timeout surfaces as
``PersistFailed``; a unique constraint violation surfaces as ``Conflict``.

Reads are simply abandoned when they time out. Writes are not: a worker
thread cannot be cancelled, so each write checks its deadline before
``COMMIT`` and rolls back when it has passed. A write reported as failed
therefore never lands later.
"""

import asyncio
import sqlite3
import time
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence, Union

from community_alert import config
from community_alert.database import dict_from_row, get_db
from community_alert.errors import Conflict, NotFound, PersistFailed, ValidationError
from community_alert.logging_config import get_logger

logger = get_logger(__name__)

TABLES = {
    "user": "users",
    "alert": "alerts",
    "event": "events",
    "alert_message": "alert_messages",
    "event_message": "event_messages",
}

COLUMNS = {
    "user": {"id", "username", "password_hash", "community", "created_at"},
    "alert": {
        "id",
        "title",
        "description",
        "category",
        "severity",
        "location",
        "status",
        "community",
        "created_by",
        "created_at",
        "updated_at",
    },
    "event": {
        "id",
        "title",
        "description",
        "date",
        "location",
        "category",
        "community",
        "max_attendees",
        "created_by",
        "created_at",
    },
    "alert_message": {
        "id",
        "alert_id",
        "user_id",
        "username",
        "message",
        "timestamp",
        "created_at",
    },
    "event_message": {
        "id",
        "event_id",
        "user_id",
        "username",
        "message",
        "timestamp",
        "created_at",
    },
}


def _table(kind: str) -> str:
    try:
        return TABLES[kind]
    except KeyError:
        raise ValueError(f"Unknown record kind: {kind}")


def _check_columns(kind: str, names: Iterable[str]):
    unknown = set(names) - COLUMNS[kind]
    if unknown:
        raise ValueError(f"Unknown {kind} column(s): {', '.join(sorted(unknown))}")


def _order_by(kind: str, sort: Union[str, Sequence[str], None]) -> str:
    """Translate ``"-created_at"`` style keys into an ORDER BY clause."""
    if not sort:
        return ""
    keys = [sort] if isinstance(sort, str) else list(sort)
    parts = []
    for key in keys:
        direction = "DESC" if key.startswith("-") else "ASC"
        column = key.lstrip("-+")
        _check_columns(kind, [column])
        parts.append(f"{column} {direction}")
    # id breaks ties so equal timestamps keep insertion order
    parts.append("id DESC" if parts[0].endswith("DESC") else "id ASC")
    return " ORDER BY " + ", ".join(parts)


def coerce_id(record_id) -> Optional[int]:
    """Return the integer id, or None when the client sent garbage."""
    if isinstance(record_id, bool):
        return None
    try:
        return int(str(record_id).strip())
    except (TypeError, ValueError):
        return None


def _attendees(conn, event_id: int) -> List[int]:
    cursor = conn.cursor()
    cursor.execute(
        "SELECT user_id FROM event_attendees WHERE event_id = ? ORDER BY rowid",
        (event_id,),
    )
    return [row[0] for row in cursor.fetchall()]


def _hydrate(conn, kind: str, row: Optional[dict]) -> Optional[dict]:
    if row is not None and kind == "event":
        row["attendees"] = _attendees(conn, row["id"])
    return row


class DeadlineExceeded(Exception):
    """A write ran past its deadline and was rolled back."""


def _commit_before(conn, deadline: float):
    if time.monotonic() > deadline:
        conn.rollback()
        raise DeadlineExceeded()
    conn.commit()


class RecordStore:
    """Durable record store used by the real-time core and the HTTP routes."""

    def __init__(self, db_path: Optional[str] = None, timeout: Optional[float] = None):
        self.db_path = db_path or config.DATABASE_PATH
        self.timeout = config.STORE_TIMEOUT_SECONDS if timeout is None else timeout

    def _connect(self):
        # bounds lock waits inside the worker thread
        return get_db(self.db_path, timeout=self.timeout)

    async def _run(self, operation: str, fn, *args):
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args), self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Store {operation} timed out after {self.timeout}s")
            raise PersistFailed("Store operation timed out")
        except sqlite3.Error as exc:
            logger.error(f"Store {operation} failed: {exc}", exc_info=True)
            raise PersistFailed("Store operation failed")

    async def _write(self, operation: str, fn, *args):
        """Run fn(deadline, *args) to completion; fn commits only before the deadline."""
        deadline = time.monotonic() + self.timeout
        try:
            return await asyncio.to_thread(fn, deadline, *args)
        except DeadlineExceeded:
            logger.error(f"Store {operation} timed out after {self.timeout}s, rolled back")
            raise PersistFailed("Store operation timed out")
        except sqlite3.IntegrityError as exc:
            logger.info(f"Store {operation} rejected: {exc}")
            raise Conflict()
        except sqlite3.Error as exc:
            logger.error(f"Store {operation} failed: {exc}", exc_info=True)
            raise PersistFailed("Store operation failed")

    # ============ Generic record access ============

    async def find_by_id(self, kind: str, record_id) -> Optional[dict]:
        table = _table(kind)
        object_id = coerce_id(record_id)
        if object_id is None:
            return None

        def _query():
            conn = self._connect()
            try:
                cursor = conn.cursor()
                cursor.execute(f"SELECT * FROM {table} WHERE id = ?", (object_id,))
                return _hydrate(conn, kind, dict_from_row(cursor.fetchone()))
            finally:
                conn.close()

        return await self._run(f"find_by_id({kind})", _query)

    async def create(self, kind: str, fields: dict) -> dict:
        table = _table(kind)
        _check_columns(kind, fields)
        names = list(fields)

        def _insert(deadline):
            conn = self._connect()
            try:
                cursor = conn.cursor()
                cursor.execute(
                    f"INSERT INTO {table} ({', '.join(names)}) "
                    f"VALUES ({', '.join('?' for _ in names)})",
                    [fields[name] for name in names],
                )
                _commit_before(conn, deadline)
                cursor.execute(f"SELECT * FROM {table} WHERE id = ?", (cursor.lastrowid,))
                return _hydrate(conn, kind, dict_from_row(cursor.fetchone()))
            finally:
                conn.close()

        return await self._write(f"create({kind})", _insert)

    async def find(
        self,
        kind: str,
        filter: Optional[dict] = None,
        sort: Union[str, Sequence[str], None] = None,
        limit: Optional[int] = None,
    ) -> List[dict]:
        table = _table(kind)
        filter = filter or {}
        _check_columns(kind, filter)
        where = " AND ".join(f"{name} = ?" for name in filter)
        sql = f"SELECT * FROM {table}"
        if where:
            sql += f" WHERE {where}"
        sql += _order_by(kind, sort)
        params = list(filter.values())
        if limit:
            sql += " LIMIT ?"
            params.append(int(limit))

        def _query():
            conn = self._connect()
            try:
                cursor = conn.cursor()
                cursor.execute(sql, params)
                rows = [dict_from_row(row) for row in cursor.fetchall()]
                return [_hydrate(conn, kind, row) for row in rows]
            finally:
                conn.close()

        return await self._run(f"find({kind})", _query)

    async def update(self, kind: str, record_id, fields: dict) -> Optional[dict]:
        """Update a record; returns None when it does not exist."""
        table = _table(kind)
        _check_columns(kind, fields)
        object_id = coerce_id(record_id)
        if object_id is None:
            return None
        assignments = ", ".join(f"{name} = ?" for name in fields)

        def _update(deadline):
            conn = self._connect()
            try:
                cursor = conn.cursor()
                cursor.execute(
                    f"UPDATE {table} SET {assignments} WHERE id = ?",
                    [*fields.values(), object_id],
                )
                _commit_before(conn, deadline)
                cursor.execute(f"SELECT * FROM {table} WHERE id = ?", (object_id,))
                return _hydrate(conn, kind, dict_from_row(cursor.fetchone()))
            finally:
                conn.close()

        return await self._write(f"update({kind})", _update)

    async def delete(self, kind: str, record_id) -> bool:
        table = _table(kind)
        object_id = coerce_id(record_id)
        if object_id is None:
            return False

        def _delete(deadline):
            conn = self._connect()
            try:
                cursor = conn.cursor()
                cursor.execute(f"DELETE FROM {table} WHERE id = ?", (object_id,))
                _commit_before(conn, deadline)
                return cursor.rowcount > 0
            finally:
                conn.close()

        return await self._write(f"delete({kind})", _delete)

    # ============ Event attendance ============

    async def add_attendee(self, event_id, user_id: int) -> dict:
        """Add a user to an event, enforcing duplicates and capacity atomically."""
        object_id = coerce_id(event_id)
        if object_id is None:
            raise NotFound("Event not found")

        def _join(deadline):
            conn = self._connect()
            try:
                conn.isolation_level = None
                cursor = conn.cursor()
                # Closing the connection without COMMIT rolls the transaction back
                cursor.execute("BEGIN IMMEDIATE")
                cursor.execute("SELECT * FROM events WHERE id = ?", (object_id,))
                event = dict_from_row(cursor.fetchone())
                if not event:
                    return "missing"
                attendees = _attendees(conn, object_id)
                if user_id in attendees:
                    return "duplicate"
                if len(attendees) >= event["max_attendees"]:
                    return "full"
                cursor.execute(
                    "INSERT INTO event_attendees (event_id, user_id, joined_at) VALUES (?, ?, ?)",
                    (object_id, user_id, datetime.now(timezone.utc).isoformat()),
                )
                if time.monotonic() > deadline:
                    raise DeadlineExceeded()
                cursor.execute("COMMIT")
                return "joined"
            finally:
                conn.close()

        outcome = await self._write("add_attendee", _join)
        if outcome == "missing":
            raise NotFound("Event not found")
        if outcome == "duplicate":
            raise ValidationError("Already joined this event")
        if outcome == "full":
            raise ValidationError("Event is full")
        return await self.find_by_id("event", object_id)

    async def remove_attendee(self, event_id, user_id: int) -> bool:
        object_id = coerce_id(event_id)
        if object_id is None:
            return False

        def _leave(deadline):
            conn = self._connect()
            try:
                cursor = conn.cursor()
                cursor.execute(
                    "DELETE FROM event_attendees WHERE event_id = ? AND user_id = ?",
                    (object_id, user_id),
                )
                _commit_before(conn, deadline)
                return cursor.rowcount > 0
            finally:
                conn.close()

        return await self._write("remove_attendee", _leave)
