"""Presence Tracker – distinct usernames per room, derived from membership.

Presence is never stored on its own. The set of users in a room is always
recomputed from the Room Registry's member sids and the sessions behind them,
so several tabs of one user count once: the first session to enter announces
the user, the last one to go announces the departure.
"""

import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set, Tuple

from community_alert.logging_config import get_logger
from community_alert.services.rooms import RoomKey, RoomKind, RoomRegistry
from community_alert.services.ws_manager import Session, SessionManager

logger = get_logger(__name__)

# (joined, left) event names per room kind; community rooms are silent
PRESENCE_EVENTS: Dict[RoomKind, Optional[Tuple[str, str]]] = {
    RoomKind.EVENT: ("user_joined", "user_left"),
    RoomKind.ALERT: ("alert_user_joined", "alert_user_left"),
    RoomKind.COMMUNITY: None,
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class PresenceTracker:
    def __init__(self, registry: RoomRegistry, sessions: SessionManager):
        self.registry = registry
        self.sessions = sessions
        self._lock = asyncio.Lock()

    def usernames(self, room: RoomKey, exclude_sid: Optional[str] = None) -> Set[str]:
        """Usernames with at least one session in room."""
        names = set()
        for sid in self.registry.members_of(room):
            if sid == exclude_sid:
                continue
            session = self.sessions.get(sid)
            if session is not None:
                names.add(session.username)
        return names

    def online(self, room: RoomKey) -> List[str]:
        return sorted(self.usernames(room))

    async def join(self, room: RoomKey, session: Session) -> bool:
        """Add session to room; announce the user if they were absent.

        Returns False when the session is no longer connected, in which case
        nothing is joined.
        """
        async with self._lock:
            # a disconnect may have run while the caller was awaiting the store
            if self.sessions.get(session.sid) is not session:
                return False
            was_present = session.username in self.usernames(room, exclude_sid=session.sid)
            added = await self.registry.join(room, session.sid)
            if added and not was_present:
                await self._announce(room, session, joined=True)
        return True

    async def leave(self, room: RoomKey, session: Session) -> bool:
        """Remove session from room; announce the user if none of their sessions remain."""
        async with self._lock:
            removed = await self.registry.leave(room, session.sid)
            if removed and session.username not in self.usernames(room):
                await self._announce(room, session, joined=False)
        return removed

    async def leave_all(self, session: Session) -> Set[RoomKey]:
        """Remove session from every room, announcing each vacated room once."""
        async with self._lock:
            rooms = await self.registry.leave_all(session.sid)
            for room in rooms:
                if session.username not in self.usernames(room):
                    await self._announce(room, session, joined=False)
        return rooms

    async def _announce(self, room: RoomKey, session: Session, joined: bool):
        names = PRESENCE_EVENTS[room.kind]
        if names is None:
            return
        event = names[0] if joined else names[1]
        payload = {
            "userId": session.user_id,
            "username": session.username,
            "timestamp": _now(),
        }
        logger.info(f"{session.username} {'joined' if joined else 'left'} {room}")
        # joiners are not told about themselves; leavers are already out
        await self.registry.broadcast(room, event, payload, exclude_sid=session.sid)
