"""Room Registry – the one owner of room membership.

Room state is a mapping of ``RoomKey`` to member sids plus a reverse index of
sid to rooms. Joins, leaves and broadcast fan-out are serialized by a single
``asyncio.Lock`` so that broadcasts to a room go out in the order they were
requested and every broadcast reads membership as it is at send time.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Optional, Set

from community_alert.logging_config import get_logger

logger = get_logger(__name__)

# emit(event, data, to=sid) – python-socketio's AsyncServer.emit fits this shape
Emitter = Callable[..., Awaitable[Any]]


class RoomKind(str, Enum):
    COMMUNITY = "community"
    ALERT = "alert"
    EVENT = "event"


@dataclass(frozen=True)
class RoomKey:
    kind: RoomKind
    key: str

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.key}"


def community_room(name: str) -> RoomKey:
    return RoomKey(RoomKind.COMMUNITY, str(name))


def alert_room(alert_id) -> RoomKey:
    return RoomKey(RoomKind.ALERT, str(alert_id))


def event_room(event_id) -> RoomKey:
    return RoomKey(RoomKind.EVENT, str(event_id))


class RoomRegistry:
    """Manage room membership and broadcast events to room members."""

    def __init__(self, emit: Emitter):
        self._emit = emit
        self._rooms: Dict[RoomKey, Set[str]] = {}  # room -> set of sids
        self._session_rooms: Dict[str, Set[RoomKey]] = {}  # sid -> rooms
        self._lock = asyncio.Lock()

    async def join(self, room: RoomKey, sid: str) -> bool:
        """Add sid to room. Returns False if it was already a member."""
        async with self._lock:
            members = self._rooms.setdefault(room, set())
            if sid in members:
                return False
            members.add(sid)
            self._session_rooms.setdefault(sid, set()).add(room)
        logger.debug(f"{sid} joined {room} ({len(members)} members)")
        return True

    async def leave(self, room: RoomKey, sid: str) -> bool:
        """Remove sid from room. Returns False if it was not a member."""
        async with self._lock:
            return self._discard(room, sid)

    async def leave_all(self, sid: str) -> Set[RoomKey]:
        """Remove sid from every room it joined and return those rooms."""
        async with self._lock:
            rooms = set(self._session_rooms.get(sid, set()))
            for room in rooms:
                self._discard(room, sid)
        return rooms

    def _discard(self, room: RoomKey, sid: str) -> bool:
        members = self._rooms.get(room)
        if not members or sid not in members:
            return False
        members.discard(sid)
        if not members:
            del self._rooms[room]
            logger.debug(f"Room {room} is empty, discarded")
        rooms = self._session_rooms.get(sid)
        if rooms is not None:
            rooms.discard(room)
            if not rooms:
                del self._session_rooms[sid]
        return True

    def members_of(self, room: RoomKey) -> FrozenSet[str]:
        return frozenset(self._rooms.get(room, ()))

    def rooms_of(self, sid: str) -> FrozenSet[RoomKey]:
        return frozenset(self._session_rooms.get(sid, ()))

    def is_member(self, room: RoomKey, sid: str) -> bool:
        return sid in self._rooms.get(room, ())

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    async def broadcast(
        self,
        room: RoomKey,
        event: str,
        payload: Any,
        exclude_sid: Optional[str] = None,
    ) -> int:
        """Send event to every current member of room except exclude_sid.

        Returns the number of members the event was handed to.
        """
        async with self._lock:
            targets = [sid for sid in self._rooms.get(room, ()) if sid != exclude_sid]
            if not targets:
                return 0
            results = await asyncio.gather(
                *(self._emit(event, payload, to=sid) for sid in targets),
                return_exceptions=True,
            )
        for sid, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning(f"Error sending {event} to {sid} in {room}: {result}")
        logger.debug(f"Broadcast {event} to {len(targets)} member(s) of {room}")
        return len(targets)

    async def send(self, sid: str, event: str, payload: Any):
        """Send event to a single session, outside any room."""
        try:
            await self._emit(event, payload, to=sid)
        except Exception as exc:
            logger.warning(f"Error sending {event} to {sid}: {exc}")
