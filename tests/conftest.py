import contextvars
import os
import tempfile
import time

# Config is read at import time; keep the module-level app off the working tree
_TMP = tempfile.mkdtemp(prefix="community-alert-tests-")
os.environ.setdefault("DATABASE_PATH", os.path.join(_TMP, "default.db"))
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

import pytest

from community_alert.api.auth import create_access_token
from community_alert.database import get_db, init_db
from community_alert.services import store as store_module
from community_alert.services.store import RecordStore
from community_alert.sockets import ConnectionLifecycle


class FakeSio:
    """Stands in for socketio.AsyncServer: records emits and handlers."""

    def __init__(self):
        self.handlers = {}
        self.emitted = []  # (event, data, to)
        self.disconnected = []

    def on(self, event, handler=None, namespace=None):
        self.handlers[event] = handler

    async def emit(self, event, data=None, to=None, room=None, skip_sid=None, namespace=None, callback=None):
        self.emitted.append((event, data, to or room))

    async def disconnect(self, sid, namespace=None):
        self.disconnected.append(sid)
        handler = self.handlers.get("disconnect")
        if handler:
            await handler(sid, "server disconnect")

    def events_for(self, sid, event=None):
        return [
            (name, data)
            for name, data, to in self.emitted
            if to == sid and (event is None or name == event)
        ]

    def recipients(self, event):
        return {to for name, _, to in self.emitted if name == event}

    def clear(self):
        self.emitted.clear()


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "test.db")
    init_db(path)
    return path


@pytest.fixture
def store(db_path):
    return RecordStore(db_path)


@pytest.fixture
def sio():
    return FakeSio()


@pytest.fixture
def lifecycle(sio, store):
    return ConnectionLifecycle(sio, store)


def insert_user(db_path, username, community="general"):
    conn = get_db(db_path)
    cursor = conn.cursor()
    cursor.execute(
        "INSERT INTO users (username, password_hash, community) VALUES (?, ?, ?)",
        (username, "not-a-real-hash", community),
    )
    conn.commit()
    user_id = cursor.lastrowid
    conn.close()
    return {"id": user_id, "username": username, "community": community}


def insert_alert(db_path, created_by, community="oak", title="Fallen tree"):
    conn = get_db(db_path)
    cursor = conn.cursor()
    cursor.execute(
        """
        INSERT INTO alerts (title, description, category, severity, location, community, created_by)
        VALUES (?, ?, 'safety', 'high', 'Main St', ?, ?)
        """,
        (title, "Blocking the road", community, created_by),
    )
    conn.commit()
    alert_id = cursor.lastrowid
    conn.close()
    return alert_id


def insert_event(db_path, created_by, attendees=(), community="oak", max_attendees=50):
    conn = get_db(db_path)
    cursor = conn.cursor()
    cursor.execute(
        """
        INSERT INTO events (title, description, date, location, category, community, max_attendees, created_by)
        VALUES ('Park cleanup', 'Bring gloves', '2026-11-01T09:00:00', 'Oak park', 'cleanup', ?, ?, ?)
        """,
        (community, max_attendees, created_by),
    )
    event_id = cursor.lastrowid
    for user_id in attendees:
        cursor.execute(
            "INSERT INTO event_attendees (event_id, user_id) VALUES (?, ?)",
            (event_id, user_id),
        )
    conn.commit()
    conn.close()
    return event_id


def token_for(user):
    return create_access_token(user["id"])


async def connect(lifecycle, sid, user):
    await lifecycle.on_connect(sid, {}, {"token": token_for(user)})
    return lifecycle.sessions.get(sid)


def slow_writes(monkeypatch, store, delay):
    """Make store.create open its connection `delay` seconds late.

    The real create still runs in its worker thread, so the write overruns
    the store deadline the way a stalled disk would. Reads are untouched.
    """
    writing = contextvars.ContextVar("writing", default=False)
    real_get_db = store_module.get_db
    real_create = store.create

    def late_get_db(*args, **kwargs):
        # asyncio.to_thread carries the caller's context into the worker
        if writing.get():
            time.sleep(delay)
        return real_get_db(*args, **kwargs)

    async def create(kind, fields):
        token = writing.set(True)
        try:
            return await real_create(kind, fields)
        finally:
            writing.reset(token)

    monkeypatch.setattr(store_module, "get_db", late_get_db)
    monkeypatch.setattr(store, "create", create)
