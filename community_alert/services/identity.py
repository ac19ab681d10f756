"""Identity Verifier – resolve a bearer credential to a user identity."""

from dataclasses import dataclass
from typing import Optional

import jwt

from community_alert import config
from community_alert.errors import InvalidCredential, MissingCredential, UnknownUser
from community_alert.logging_config import get_logger
from community_alert.services.store import RecordStore, coerce_id

logger = get_logger(__name__)


@dataclass(frozen=True)
class Identity:
    user_id: int
    username: str


class IdentityVerifier:
    """Verify HS256 JWTs and hydrate the user from the store."""

    def __init__(
        self,
        store: RecordStore,
        secret_key: Optional[str] = None,
        algorithm: Optional[str] = None,
    ):
        self.store = store
        self.secret_key = secret_key or config.JWT_SECRET_KEY
        self.algorithm = algorithm or config.JWT_ALGORITHM

    def decode(self, token: Optional[str]) -> int:
        """Return the user id carried by the token."""
        if not token:
            raise MissingCredential()
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.InvalidTokenError as exc:
            logger.info(f"Rejected credential: {exc}")
            raise InvalidCredential()

        user_id = coerce_id(payload.get("sub", payload.get("userId")))
        if user_id is None:
            raise InvalidCredential()
        return user_id

    async def verify(self, token: Optional[str]) -> Identity:
        user_id = self.decode(token)
        user = await self.store.find_by_id("user", user_id)
        if user is None:
            logger.info(f"Credential for unknown user id={user_id}")
            raise UnknownUser()
        return Identity(user_id=user["id"], username=user["username"])
