from pydantic import BaseModel, Field
from typing import Optional, List, Literal
from datetime import datetime

AlertCategory = Literal[
    "safety", "environment", "infrastructure", "lost_found", "event", "other"
]
AlertSeverity = Literal["low", "medium", "high", "critical"]
AlertStatus = Literal["active", "resolved", "closed"]
EventCategory = Literal["cleanup", "meeting", "workshop", "social", "other"]


# ============ Auth Models ============


class LoginRequest(BaseModel):
    username: str
    password: str


class RegisterRequest(BaseModel):
    username: str = Field(min_length=3, max_length=30)
    password: str = Field(min_length=6)
    community: str = Field(default="general", min_length=1, max_length=60)


class LoginResponse(BaseModel):
    success: bool
    data: Optional[dict] = None  # { id, username, community, token, created_at }
    error: Optional[str] = None


class UserResponse(BaseModel):
    id: int
    username: str
    community: str
    created_at: str


class AuthMeResponse(BaseModel):
    success: bool
    data: Optional[UserResponse] = None
    error: Optional[str] = None


class UserRef(BaseModel):
    id: int
    username: Optional[str] = None


# ============ Alert Models ============


class AlertCreate(BaseModel):
    title: str = Field(min_length=1, max_length=100)
    description: str = Field(min_length=1, max_length=500)
    category: AlertCategory
    severity: AlertSeverity = "medium"
    location: str = Field(min_length=1)


class AlertStatusUpdate(BaseModel):
    status: AlertStatus


class AlertResponse(BaseModel):
    id: int
    title: str
    description: str
    category: str
    severity: str
    location: str
    status: str
    community: str
    created_by: UserRef
    created_at: str
    updated_at: Optional[str] = None


class AlertsListResponse(BaseModel):
    success: bool
    data: List[AlertResponse]
    error: Optional[str] = None


class SingleAlertResponse(BaseModel):
    success: bool
    data: Optional[AlertResponse] = None
    error: Optional[str] = None


# ============ Event Models ============


class EventCreate(BaseModel):
    title: str = Field(min_length=1, max_length=100)
    description: str = Field(min_length=1, max_length=500)
    date: datetime
    location: str = Field(min_length=1)
    category: EventCategory
    max_attendees: int = Field(default=50, ge=1)


class EventResponse(BaseModel):
    id: int
    title: str
    description: str
    date: str
    location: str
    category: str
    community: str
    max_attendees: int
    created_by: UserRef
    attendees: List[UserRef]
    created_at: str


class EventsListResponse(BaseModel):
    success: bool
    data: List[EventResponse]
    error: Optional[str] = None


class SingleEventResponse(BaseModel):
    success: bool
    data: Optional[EventResponse] = None
    error: Optional[str] = None


# ============ Chat Models ============


class ChatMessageCreate(BaseModel):
    message: str
    timestamp: Optional[str] = None


class MessagesListResponse(BaseModel):
    success: bool
    data: List[dict]  # wire payloads: {_id, alertId|eventId, userId, username, message, timestamp}
    error: Optional[str] = None


class SingleMessageResponse(BaseModel):
    success: bool
    data: Optional[dict] = None
    error: Optional[str] = None
