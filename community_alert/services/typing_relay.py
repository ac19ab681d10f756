"""Typing Coordinator – relay "is typing" signals to room peers.

The server keeps no typing state. Each signal is forwarded as-is to the other
members of the room; a client treats a user as no longer typing once
``TYPING_TTL_SECONDS`` pass without a fresh signal from them.
"""

from community_alert.errors import AccessDenied
from community_alert.services.rooms import RoomKey, RoomKind, RoomRegistry
from community_alert.services.ws_manager import Session

TYPING_TTL_SECONDS = 2


class TypingCoordinator:
    def __init__(self, registry: RoomRegistry):
        self.registry = registry

    async def signal(self, room: RoomKey, session: Session, parent_id) -> int:
        if not self.registry.is_member(room, session.sid):
            raise AccessDenied("Join the room before typing")

        if room.kind is RoomKind.ALERT:
            event = "alert_user_typing"
            payload = {
                "alertId": parent_id,
                "userId": session.user_id,
                "username": session.username,
            }
        elif room.kind is RoomKind.EVENT:
            event = "user_typing"
            payload = {
                "userId": session.user_id,
                "username": session.username,
                "eventId": parent_id,
            }
        else:
            raise AccessDenied("Typing is only relayed in alert and event rooms")

        return await self.registry.broadcast(room, event, payload, exclude_sid=session.sid)
