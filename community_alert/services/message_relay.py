"""Message Relay – validate, authorize, persist, then broadcast chat messages.

One relay instance serves alert rooms and another serves event rooms. They
run the same algorithm and differ only in the ``RelayKind`` they are built
with: which record is the parent, who may post, where messages are stored and
which events carry them.

A message is broadcast only after the store has accepted it, and it is stored
only after the sender passed authorization.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

from community_alert import config
from community_alert.errors import (
    AccessDenied,
    AlertPlatformError,
    NotFound,
    PersistFailed,
    ValidationError,
)
from community_alert.logging_config import get_logger
from community_alert.services.rooms import RoomKey, RoomRegistry, alert_room, event_room
from community_alert.services.store import RecordStore, coerce_id

logger = get_logger(__name__)


@dataclass(frozen=True)
class Sender:
    """Canonical author identity, resolved once per send."""

    user_id: int
    username: str
    community: Optional[str] = None

    @classmethod
    def from_session(cls, session) -> "Sender":
        return cls(session.user_id, session.username, session.community)

    @classmethod
    def from_user(cls, user: dict) -> "Sender":
        return cls(user["id"], user["username"], user.get("community"))


def _same_community(parent: dict, sender: Sender) -> bool:
    # a session that never joined a community is denied
    return sender.community is not None and parent.get("community") == sender.community


def _is_attendee(parent: dict, sender: Sender) -> bool:
    return sender.user_id in (parent.get("attendees") or [])


@dataclass(frozen=True)
class RelayKind:
    parent_kind: str
    message_kind: str
    parent_field: str  # column on the message record
    id_key: str  # parent id key in the wire payload
    room: Callable[[int], RoomKey]
    authorize: Callable[[dict, Sender], bool]
    new_message_event: str
    error_event: str
    not_found_reason: str
    denied_reason: str


ALERT_RELAY = RelayKind(
    parent_kind="alert",
    message_kind="alert_message",
    parent_field="alert_id",
    id_key="alertId",
    room=alert_room,
    authorize=_same_community,
    new_message_event="new_alert_message",
    error_event="alert_message_error",
    not_found_reason="Alert not found",
    denied_reason="Access denied",
)

EVENT_RELAY = RelayKind(
    parent_kind="event",
    message_kind="event_message",
    parent_field="event_id",
    id_key="eventId",
    room=event_room,
    authorize=_is_attendee,
    new_message_event="new_event_message",
    error_event="message_error",
    not_found_reason="Event not found",
    denied_reason="You must be attending the event to send messages",
)


def validate_body(body) -> str:
    if not isinstance(body, str) or not body.strip():
        raise ValidationError("Message cannot be empty")
    body = body.strip()
    if len(body) > config.MESSAGE_MAX_LENGTH:
        raise ValidationError(
            f"Message cannot exceed {config.MESSAGE_MAX_LENGTH} characters"
        )
    return body


def resolve_timestamp(timestamp) -> str:
    """Client send time is kept verbatim; the server stamps only when it is missing."""
    if isinstance(timestamp, str) and timestamp.strip():
        return timestamp
    return datetime.now(timezone.utc).isoformat()


class MessageRelay:
    def __init__(self, kind: RelayKind, store: RecordStore, registry: RoomRegistry):
        self.kind = kind
        self.store = store
        self.registry = registry

    @property
    def error_event(self) -> str:
        return self.kind.error_event

    def serialize(self, record: dict) -> dict:
        """Message record -> wire payload."""
        return {
            "_id": record["id"],
            self.kind.id_key: record[self.kind.parent_field],
            "userId": record["user_id"],
            "username": record["username"],
            "message": record["message"],
            "timestamp": record["timestamp"],
        }

    async def authorize(self, parent_id, sender: Sender) -> dict:
        """Return the parent record if sender may post to it."""
        parent = await self.store.find_by_id(self.kind.parent_kind, parent_id)
        if parent is None:
            raise NotFound(self.kind.not_found_reason)
        if not self.kind.authorize(parent, sender):
            raise AccessDenied(self.kind.denied_reason)
        return parent

    async def send(self, parent_id, sender: Sender, body, timestamp=None) -> dict:
        """Persist a message and broadcast it to the parent's room.

        Raises ValidationError, NotFound, AccessDenied or PersistFailed; on any
        of them nothing has been broadcast.
        """
        body = validate_body(body)
        parent = await self.authorize(parent_id, sender)

        try:
            record = await self.store.create(
                self.kind.message_kind,
                {
                    self.kind.parent_field: parent["id"],
                    "user_id": sender.user_id,
                    "username": sender.username,
                    "message": body,
                    "timestamp": resolve_timestamp(timestamp),
                },
            )
        except AlertPlatformError as exc:
            logger.error(
                f"Could not persist {self.kind.message_kind} from {sender.username}: {exc}"
            )
            raise PersistFailed("Failed to send message")

        message = self.serialize(record)
        await self.registry.broadcast(
            self.kind.room(parent["id"]), self.kind.new_message_event, message
        )
        return message

    async def history(self, parent_id, sender: Sender, limit: Optional[int] = None) -> List[dict]:
        """Persisted messages for a parent, oldest first."""
        parent = await self.authorize(parent_id, sender)
        records = await self.store.find(
            self.kind.message_kind,
            {self.kind.parent_field: parent["id"]},
            sort="timestamp",
            limit=limit or config.HISTORY_LIMIT,
        )
        return [self.serialize(record) for record in records]


def parent_id_of(data, id_key: str) -> Optional[int]:
    """Pull a parent id out of a socket payload (dict or bare id)."""
    if isinstance(data, dict):
        data = data.get(id_key)
    return coerce_id(data)
