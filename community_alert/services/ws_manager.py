"""
Session Manager – Track authenticated Socket.IO sessions
"""

from dataclasses import dataclass
from typing import Dict, Optional

from community_alert.services.identity import Identity


@dataclass
class Session:
    """One authenticated live connection; community is set by join_community."""

    sid: str
    user_id: int
    username: str
    community: Optional[str] = None

    @classmethod
    def from_identity(cls, sid: str, identity: Identity) -> "Session":
        return cls(sid=sid, user_id=identity.user_id, username=identity.username)


class SessionManager:
    """Manage live sessions, indexed by sid."""

    def __init__(self):
        self.sessions: Dict[str, Session] = {}  # sid -> session

    def connect(self, sid: str, identity: Identity) -> Session:
        """Register a new authenticated connection."""
        session = Session.from_identity(sid, identity)
        self.sessions[sid] = session
        return session

    def disconnect(self, sid: str) -> Optional[Session]:
        """Unregister a connection. Returns None if it was already gone."""
        return self.sessions.pop(sid, None)

    def get(self, sid: str) -> Optional[Session]:
        return self.sessions.get(sid)

    @property
    def connected_count(self) -> int:
        return len(self.sessions)
