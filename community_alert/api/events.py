from fastapi import APIRouter, HTTPException, status, Depends
from typing import Dict

from community_alert.api.alerts import usernames_for, utc_now
from community_alert.api.auth import require_login
from community_alert.api.deps import get_dispatcher, get_store
from community_alert.errors import NotFound, ValidationError
from community_alert.logging_config import get_logger
from community_alert.models import (
    EventCreate,
    EventResponse,
    EventsListResponse,
    SingleEventResponse,
    UserRef,
)
from community_alert.services.broadcast import BroadcastDispatcher
from community_alert.services.store import RecordStore

logger = get_logger(__name__)

router = APIRouter()


async def serialize_event(store: RecordStore, row: dict, cache: Dict[int, str] = None) -> EventResponse:
    """Convert event record (with attendee ids) to EventResponse."""
    attendee_ids = row.get("attendees") or []
    names = await usernames_for(store, [row["created_by"], *attendee_ids], cache)
    return EventResponse(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        date=str(row["date"]),
        location=row["location"],
        category=row["category"],
        community=row["community"],
        max_attendees=row["max_attendees"],
        created_by=UserRef(id=row["created_by"], username=names[row["created_by"]]),
        attendees=[UserRef(id=uid, username=names[uid]) for uid in attendee_ids],
        created_at=str(row["created_at"]),
    )


async def _community_event(store: RecordStore, event_id: int, user: dict) -> dict:
    event = await store.find_by_id("event", event_id)
    if not event or event["community"] != user["community"]:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Event not found")
    return event


@router.post("", response_model=SingleEventResponse, status_code=status.HTTP_201_CREATED)
async def create_event(
    req: EventCreate,
    user: dict = Depends(require_login),
    store: RecordStore = Depends(get_store),
    dispatcher: BroadcastDispatcher = Depends(get_dispatcher),
):
    """Create an event; the creator is its first attendee."""
    row = await store.create(
        "event",
        {
            "title": req.title.strip(),
            "description": req.description.strip(),
            "date": req.date.isoformat(),
            "location": req.location.strip(),
            "category": req.category,
            "community": user["community"],
            "max_attendees": req.max_attendees,
            "created_by": user["id"],
            "created_at": utc_now(),
        },
    )
    row = await store.add_attendee(row["id"], user["id"])
    event = await serialize_event(store, row)

    await dispatcher.event_created(event.model_dump())

    return SingleEventResponse(success=True, data=event)


@router.get("", response_model=EventsListResponse)
async def list_events(user: dict = Depends(require_login), store: RecordStore = Depends(get_store)):
    """Events of the caller's community, soonest first."""
    rows = await store.find("event", {"community": user["community"]}, sort="date")
    cache: Dict[int, str] = {}
    return EventsListResponse(
        success=True, data=[await serialize_event(store, row, cache) for row in rows]
    )


@router.post("/{event_id}/join", response_model=SingleEventResponse)
async def join_event(
    event_id: int,
    user: dict = Depends(require_login),
    store: RecordStore = Depends(get_store),
    dispatcher: BroadcastDispatcher = Depends(get_dispatcher),
):
    """Become an attendee; rejected when already attending or the event is full."""
    await _community_event(store, event_id, user)
    try:
        row = await store.add_attendee(event_id, user["id"])
    except NotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.reason)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.reason)

    event = await serialize_event(store, row)
    logger.info(f"User id={user['id']} joined event {event_id} ({len(event.attendees)} attendees)")

    await dispatcher.event_joined(
        event.model_dump(), {"id": user["id"], "username": user["username"]}
    )

    return SingleEventResponse(success=True, data=event)


@router.post("/{event_id}/leave", response_model=SingleEventResponse)
async def leave_event(
    event_id: int,
    user: dict = Depends(require_login),
    store: RecordStore = Depends(get_store),
    dispatcher: BroadcastDispatcher = Depends(get_dispatcher),
):
    """Stop attending an event."""
    await _community_event(store, event_id, user)
    if not await store.remove_attendee(event_id, user["id"]):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Not attending this event"
        )

    event = await serialize_event(store, await store.find_by_id("event", event_id))

    await dispatcher.event_left(
        event.model_dump(), {"id": user["id"], "username": user["username"]}
    )

    return SingleEventResponse(success=True, data=event)
