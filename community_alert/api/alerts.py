from fastapi import APIRouter, HTTPException, status, Depends
from datetime import datetime, timezone
from typing import Dict

from community_alert.api.auth import require_login
from community_alert.api.deps import get_dispatcher, get_store
from community_alert.logging_config import get_logger
from community_alert.models import (
    AlertCreate,
    AlertResponse,
    AlertStatusUpdate,
    AlertsListResponse,
    SingleAlertResponse,
    UserRef,
)
from community_alert.services.broadcast import BroadcastDispatcher
from community_alert.services.store import RecordStore

logger = get_logger(__name__)

router = APIRouter()


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def usernames_for(store: RecordStore, user_ids, cache: Dict[int, str] = None) -> Dict[int, str]:
    """Resolve user ids to usernames, reusing (and filling) cache."""
    cache = {} if cache is None else cache
    for user_id in user_ids:
        if user_id not in cache:
            user = await store.find_by_id("user", user_id)
            cache[user_id] = user["username"] if user else None
    return cache


async def serialize_alert(store: RecordStore, row: dict, cache: Dict[int, str] = None) -> AlertResponse:
    """Convert alert record to AlertResponse."""
    names = await usernames_for(store, [row["created_by"]], cache)
    return AlertResponse(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        category=row["category"],
        severity=row["severity"],
        location=row["location"],
        status=row["status"],
        community=row["community"],
        created_by=UserRef(id=row["created_by"], username=names[row["created_by"]]),
        created_at=str(row["created_at"]),
        updated_at=str(row["updated_at"]) if row["updated_at"] else None,
    )


async def _own_alert(store: RecordStore, alert_id: int, user: dict, action: str) -> dict:
    """Fetch an alert of the caller's community that the caller created."""
    alert = await store.find_by_id("alert", alert_id)
    if not alert or alert["community"] != user["community"]:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Alert not found")
    if alert["created_by"] != user["id"]:
        logger.warning(
            f"Unauthorized {action} attempt on alert {alert_id} by user id={user['id']}"
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Only the alert creator can {action} this alert",
        )
    return alert


@router.post("", response_model=SingleAlertResponse, status_code=status.HTTP_201_CREATED)
async def create_alert(
    req: AlertCreate,
    user: dict = Depends(require_login),
    store: RecordStore = Depends(get_store),
    dispatcher: BroadcastDispatcher = Depends(get_dispatcher),
):
    """Create an alert in the caller's community."""
    row = await store.create(
        "alert",
        {
            "title": req.title.strip(),
            "description": req.description.strip(),
            "category": req.category,
            "severity": req.severity,
            "location": req.location.strip(),
            "community": user["community"],
            "created_by": user["id"],
            "created_at": utc_now(),
        },
    )
    alert = await serialize_alert(store, row)

    # Broadcast to the community room
    await dispatcher.alert_created(alert.model_dump())

    return SingleAlertResponse(success=True, data=alert)


@router.get("", response_model=AlertsListResponse)
async def list_alerts(user: dict = Depends(require_login), store: RecordStore = Depends(get_store)):
    """Alerts of the caller's community, newest first."""
    rows = await store.find("alert", {"community": user["community"]}, sort="-created_at")
    cache: Dict[int, str] = {}
    return AlertsListResponse(
        success=True, data=[await serialize_alert(store, row, cache) for row in rows]
    )


@router.patch("/{alert_id}/status", response_model=SingleAlertResponse)
async def update_alert_status(
    alert_id: int,
    req: AlertStatusUpdate,
    user: dict = Depends(require_login),
    store: RecordStore = Depends(get_store),
    dispatcher: BroadcastDispatcher = Depends(get_dispatcher),
):
    """Change an alert's status (creator only)."""
    await _own_alert(store, alert_id, user, "update")
    row = await store.update("alert", alert_id, {"status": req.status, "updated_at": utc_now()})
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Alert not found")
    alert = await serialize_alert(store, row)

    await dispatcher.alert_updated(alert.model_dump())

    return SingleAlertResponse(success=True, data=alert)


@router.delete("/{alert_id}")
async def delete_alert(
    alert_id: int,
    user: dict = Depends(require_login),
    store: RecordStore = Depends(get_store),
    dispatcher: BroadcastDispatcher = Depends(get_dispatcher),
):
    """Delete an alert and its chat history (creator only)."""
    alert = await _own_alert(store, alert_id, user, "delete")
    if not await store.delete("alert", alert_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Alert not found")

    await dispatcher.alert_deleted(alert["community"], alert_id)

    return {"success": True, "message": "Alert deleted successfully"}
