"""Broadcast Dispatcher – community notifications for CRUD side effects.

HTTP routes call this after a successful write; they never touch the Room
Registry or build room names themselves.
"""

from typing import Any

from community_alert.logging_config import get_logger
from community_alert.services.rooms import RoomRegistry, community_room

logger = get_logger(__name__)


class BroadcastDispatcher:
    def __init__(self, registry: RoomRegistry):
        self.registry = registry

    async def notify_community(self, community: str, event: str, payload: Any) -> int:
        delivered = await self.registry.broadcast(community_room(community), event, payload)
        logger.info(f"Notified community {community}: {event} ({delivered} session(s))")
        return delivered

    async def alert_created(self, alert: dict) -> int:
        return await self.notify_community(alert["community"], "alert_broadcast", alert)

    async def alert_updated(self, alert: dict) -> int:
        return await self.notify_community(alert["community"], "alert_updated", alert)

    async def alert_deleted(self, community: str, alert_id: int) -> int:
        return await self.notify_community(community, "alert_deleted", alert_id)

    async def event_created(self, event: dict) -> int:
        return await self.notify_community(event["community"], "event_broadcast", event)

    async def event_joined(self, event: dict, user: dict) -> int:
        return await self.notify_community(
            event["community"], "event_joined", {"event": event, "user": user}
        )

    async def event_left(self, event: dict, user: dict) -> int:
        return await self.notify_community(
            event["community"], "event_left", {"event": event, "user": user}
        )
