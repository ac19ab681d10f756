"""Chat history, plus an HTTP fallback for sending when the socket is down.

Both paths go through the same Message Relay as the socket handlers, so the
authorization rules and the persist-then-broadcast order are identical.
"""

from fastapi import APIRouter, HTTPException, Depends

from community_alert.api.auth import require_login
from community_alert.api.deps import get_realtime
from community_alert.errors import AlertPlatformError
from community_alert.models import (
    ChatMessageCreate,
    MessagesListResponse,
    SingleMessageResponse,
)
from community_alert.services.message_relay import MessageRelay, Sender
from community_alert.sockets import ConnectionLifecycle

alert_router = APIRouter()
event_router = APIRouter()


def _http_error(exc: AlertPlatformError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.reason)


async def _history(relay: MessageRelay, parent_id: int, user: dict) -> MessagesListResponse:
    try:
        messages = await relay.history(parent_id, Sender.from_user(user))
    except AlertPlatformError as exc:
        raise _http_error(exc)
    return MessagesListResponse(success=True, data=messages)


async def _send(relay: MessageRelay, parent_id: int, req: ChatMessageCreate, user: dict):
    try:
        message = await relay.send(parent_id, Sender.from_user(user), req.message, req.timestamp)
    except AlertPlatformError as exc:
        raise _http_error(exc)
    return SingleMessageResponse(success=True, data=message)


@alert_router.get("/{alert_id}", response_model=MessagesListResponse)
async def alert_history(
    alert_id: int,
    user: dict = Depends(require_login),
    realtime: ConnectionLifecycle = Depends(get_realtime),
):
    """Message history of an alert (same community only)."""
    return await _history(realtime.alert_relay, alert_id, user)


@alert_router.post("/{alert_id}", response_model=SingleMessageResponse, status_code=201)
async def send_alert_message(
    alert_id: int,
    req: ChatMessageCreate,
    user: dict = Depends(require_login),
    realtime: ConnectionLifecycle = Depends(get_realtime),
):
    return await _send(realtime.alert_relay, alert_id, req, user)


@event_router.get("/{event_id}", response_model=MessagesListResponse)
async def event_history(
    event_id: int,
    user: dict = Depends(require_login),
    realtime: ConnectionLifecycle = Depends(get_realtime),
):
    """Message history of an event (attendees only)."""
    return await _history(realtime.event_relay, event_id, user)


@event_router.post("/{event_id}", response_model=SingleMessageResponse, status_code=201)
async def send_event_message(
    event_id: int,
    req: ChatMessageCreate,
    user: dict = Depends(require_login),
    realtime: ConnectionLifecycle = Depends(get_realtime),
):
    return await _send(realtime.event_relay, event_id, req, user)
