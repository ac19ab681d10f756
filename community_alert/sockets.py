"""Connection Lifecycle Manager – the Socket.IO side of the platform.

A connection goes Connecting -> Authenticated -> CommunityJoined ->
RoomJoined* -> Disconnected. Authentication happens in the connect handler,
so a connection that fails it never gets a session. Every other failure is
caught at the handler boundary and reported to the requesting socket alone
through exactly one error event; the rest of the room never sees it.

Join handlers return an acknowledgement so clients that ask for one learn
the room key and who is online.
"""

import asyncio
from typing import Optional
from urllib.parse import parse_qs

import socketio

from community_alert import config
from community_alert.errors import (
    AccessDenied,
    AlertPlatformError,
    AuthError,
    NotFound,
    PersistFailed,
    ValidationError,
)
from community_alert.logging_config import get_logger
from community_alert.services.broadcast import BroadcastDispatcher
from community_alert.services.identity import IdentityVerifier
from community_alert.services.message_relay import (
    ALERT_RELAY,
    EVENT_RELAY,
    MessageRelay,
    Sender,
    parent_id_of,
)
from community_alert.services.presence import PresenceTracker
from community_alert.services.rooms import (
    RoomKey,
    RoomRegistry,
    alert_room,
    community_room,
    event_room,
)
from community_alert.services.store import RecordStore
from community_alert.services.typing_relay import TypingCoordinator
from community_alert.services.ws_manager import Session, SessionManager

logger = get_logger(__name__)

GENERIC_FAILURE = "Failed to process request"


def extract_credential(environ: Optional[dict], auth) -> Optional[str]:
    """Token from the handshake auth payload, then the Authorization header, then ?token=."""
    if isinstance(auth, dict) and auth.get("token"):
        return auth["token"]
    if isinstance(auth, str) and auth:
        return auth

    environ = environ or {}
    header = environ.get("HTTP_AUTHORIZATION") or ""
    if header.startswith("Bearer "):
        return header[7:]
    tokens = parse_qs(environ.get("QUERY_STRING") or "").get("token")
    return tokens[0] if tokens else None


class ConnectionLifecycle:
    """Wires the real-time core onto a python-socketio AsyncServer."""

    def __init__(
        self,
        sio,
        store: RecordStore,
        verifier: Optional[IdentityVerifier] = None,
        auth_timeout: Optional[float] = None,
    ):
        self.sio = sio
        self.store = store
        self.verifier = verifier or IdentityVerifier(store)
        self.auth_timeout = config.AUTH_TIMEOUT_SECONDS if auth_timeout is None else auth_timeout

        self.sessions = SessionManager()
        self.registry = RoomRegistry(sio.emit)
        self.presence = PresenceTracker(self.registry, self.sessions)
        self.typing = TypingCoordinator(self.registry)
        self.alert_relay = MessageRelay(ALERT_RELAY, store, self.registry)
        self.event_relay = MessageRelay(EVENT_RELAY, store, self.registry)
        self.dispatcher = BroadcastDispatcher(self.registry)

        self._register()

    def _register(self):
        handlers = {
            "connect": self.on_connect,
            "disconnect": self.on_disconnect,
            "logout": self.on_logout,
            "join_community": self.on_join_community,
            "join_alert": self.on_join_alert,
            "leave_alert": self.on_leave_alert,
            "send_alert_message": self.on_send_alert_message,
            "alert_user_typing": self.on_alert_user_typing,
            "join_event": self.on_join_event,
            "leave_event": self.on_leave_event,
            "send_event_message": self.on_send_event_message,
            "user_typing": self.on_user_typing,
        }
        for event, handler in handlers.items():
            self.sio.on(event, handler)

    # ============ Helpers ============

    def _session(self, sid: str) -> Session:
        session = self.sessions.get(sid)
        if session is None:
            raise AccessDenied("Not authenticated")
        return session

    async def _guarded(self, sid: str, error_event: str, action, *args):
        """Run a handler body; turn any failure into one error event to sid."""
        try:
            return await action(*args)
        except AlertPlatformError as exc:
            logger.info(f"{error_event} to {sid}: {exc.reason}")
            reason = exc.reason
        except Exception:
            logger.exception(f"Unhandled error in handler for {sid} ({error_event})")
            reason = GENERIC_FAILURE
        await self.registry.send(sid, error_event, {"error": reason})
        return {"ok": False, "error": reason}

    def _ack(self, room: RoomKey) -> dict:
        return {"ok": True, "room": str(room), "online": self.presence.online(room)}

    # ============ Connection ============

    async def on_connect(self, sid: str, environ: dict, auth=None):
        token = extract_credential(environ, auth)
        try:
            identity = await asyncio.wait_for(self.verifier.verify(token), self.auth_timeout)
        except AuthError as exc:
            logger.info(f"Connection {sid} rejected: {exc.reason}")
            raise socketio.exceptions.ConnectionRefusedError(exc.reason)
        except asyncio.TimeoutError:
            logger.warning(f"Connection {sid} rejected: authentication timed out")
            raise socketio.exceptions.ConnectionRefusedError("Authentication error: Timed out")
        except PersistFailed:
            raise socketio.exceptions.ConnectionRefusedError("Authentication error: Service unavailable")

        session = self.sessions.connect(sid, identity)
        logger.info(f"Client {sid} connected as {session.username} (user {session.user_id})")

    async def on_disconnect(self, sid: str, reason=None):
        await self._cleanup(sid, reason or "transport close")

    async def on_logout(self, sid: str, data=None):
        await self._cleanup(sid, "logout")
        await self.sio.disconnect(sid)

    async def _cleanup(self, sid: str, reason: str):
        # popping the session first makes this run once per session
        session = self.sessions.disconnect(sid)
        if session is None:
            return
        rooms = await self.presence.leave_all(session)
        logger.info(
            f"{session.username} disconnected ({reason}); left {len(rooms)} room(s)"
        )

    # ============ Community ============

    async def on_join_community(self, sid: str, community=None):
        return await self._guarded(sid, "community_error", self._join_community, sid, community)

    async def _join_community(self, sid: str, community):
        if isinstance(community, dict):
            community = community.get("community")
        if not isinstance(community, str) or not community.strip():
            raise ValidationError("Community name is required")
        community = community.strip()
        session = self._session(sid)

        previous = session.community
        if previous is not None and previous != community:
            await self.presence.leave(community_room(previous), session)
        session.community = community

        room = community_room(community)
        await self.presence.join(room, session)
        logger.info(f"{session.username} joined community {community}")
        return self._ack(room)

    # ============ Alert rooms ============

    async def on_join_alert(self, sid: str, alert_id=None):
        return await self._guarded(sid, "alert_error", self._join_alert, sid, alert_id)

    async def _join_alert(self, sid: str, alert_id):
        session = self._session(sid)
        parent_id = parent_id_of(alert_id, "alertId")
        alert = await self.alert_relay.authorize(parent_id, Sender.from_session(session))
        room = alert_room(alert["id"])
        if not await self.presence.join(room, session):
            return {"ok": False, "error": "Disconnected"}
        return self._ack(room)

    async def on_leave_alert(self, sid: str, alert_id=None):
        return await self._guarded(sid, "alert_error", self._leave_room, sid, alert_id, "alertId", alert_room)

    async def on_send_alert_message(self, sid: str, data=None):
        return await self._guarded(sid, self.alert_relay.error_event, self._send, sid, data, self.alert_relay)

    async def on_alert_user_typing(self, sid: str, data=None):
        return await self._guarded(sid, self.alert_relay.error_event, self._typing, sid, data, "alertId", alert_room)

    # ============ Event rooms ============

    async def on_join_event(self, sid: str, event_id=None):
        return await self._guarded(sid, "message_error", self._join_event, sid, event_id)

    async def _join_event(self, sid: str, event_id):
        session = self._session(sid)
        event = await self.store.find_by_id("event", parent_id_of(event_id, "eventId"))
        if event is None:
            raise NotFound("Event not found")
        room = event_room(event["id"])
        if not await self.presence.join(room, session):
            return {"ok": False, "error": "Disconnected"}
        return self._ack(room)

    async def on_leave_event(self, sid: str, event_id=None):
        return await self._guarded(sid, "message_error", self._leave_room, sid, event_id, "eventId", event_room)

    async def on_send_event_message(self, sid: str, data=None):
        return await self._guarded(sid, self.event_relay.error_event, self._send, sid, data, self.event_relay)

    async def on_user_typing(self, sid: str, data=None):
        return await self._guarded(sid, self.event_relay.error_event, self._typing, sid, data, "eventId", event_room)

    # ============ Shared room actions ============

    async def _leave_room(self, sid: str, data, id_key: str, make_room):
        session = self._session(sid)
        parent_id = parent_id_of(data, id_key)
        if parent_id is None:
            return {"ok": True}
        room = make_room(parent_id)
        await self.presence.leave(room, session)
        return {"ok": True, "room": str(room)}

    async def _send(self, sid: str, data, relay: MessageRelay):
        session = self._session(sid)
        if not isinstance(data, dict):
            raise ValidationError("Invalid message payload")
        parent_id = parent_id_of(data, relay.kind.id_key)
        if parent_id is None:
            raise NotFound(relay.kind.not_found_reason)
        message = await relay.send(
            parent_id,
            Sender.from_session(session),
            data.get("message"),
            data.get("timestamp"),
        )
        return {"ok": True, "message": message}

    async def _typing(self, sid: str, data, id_key: str, make_room):
        session = self._session(sid)
        parent_id = parent_id_of(data, id_key)
        if parent_id is None:
            raise ValidationError(f"{id_key} is required")
        await self.typing.signal(make_room(parent_id), session, parent_id)
        return {"ok": True}

    # ============ Introspection ============

    def stats(self) -> dict:
        return {
            "sessions": self.sessions.connected_count,
            "rooms": self.registry.room_count,
        }
