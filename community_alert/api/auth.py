from fastapi import APIRouter, HTTPException, status, Depends, Header, Request
from datetime import datetime, timedelta, timezone
from typing import Optional
import asyncio
import jwt
import bcrypt

from community_alert import config
from community_alert.api.deps import get_store
from community_alert.errors import AuthError, Conflict
from community_alert.logging_config import get_logger
from community_alert.models import (
    LoginRequest,
    LoginResponse,
    AuthMeResponse,
    UserResponse,
    RegisterRequest,
)
from community_alert.services.identity import IdentityVerifier
from community_alert.services.store import RecordStore

logger = get_logger(__name__)

router = APIRouter()


def get_password_hash(password: str) -> str:
    """Hash a password."""
    salt = bcrypt.gensalt()
    return bcrypt.hashpw(password.encode(), salt).decode()


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Check a password against its hash."""
    return bcrypt.checkpw(plain_password.encode(), hashed_password.encode())


def create_access_token(user_id: int, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token, accepted by both HTTP routes and the socket handshake."""
    if expires_delta is None:
        expires_delta = timedelta(minutes=config.JWT_EXPIRE_MINUTES)

    expire = datetime.now(timezone.utc) + expires_delta
    to_encode = {"sub": str(user_id), "exp": expire}

    return jwt.encode(to_encode, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def public_user(user: dict) -> dict:
    return {
        "id": user["id"],
        "username": user["username"],
        "community": user["community"],
        "created_at": user["created_at"],
    }


async def get_current_user(
    authorization: Optional[str] = Header(None),
    store: RecordStore = Depends(get_store),
):
    """Current user from the Bearer token in the Authorization header, or None."""
    if not authorization or not authorization.startswith("Bearer "):
        return None

    token = authorization[7:]  # Remove "Bearer " prefix
    try:
        identity = await IdentityVerifier(store).verify(token)
    except AuthError:
        return None
    return await store.find_by_id("user", identity.user_id)


def require_login(user: Optional[dict] = Depends(get_current_user)):
    """Dependency requiring authentication."""
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated"
        )
    return user


def _login_response(user: dict) -> LoginResponse:
    return LoginResponse(
        success=True,
        data={**public_user(user), "token": create_access_token(user["id"])},
    )


@router.post("/login", response_model=LoginResponse)
async def login(req: LoginRequest, store: RecordStore = Depends(get_store)):
    """Authenticate the user and return a JWT."""
    users = await store.find("user", {"username": req.username}, limit=1)
    user = users[0] if users else None

    if not user:
        logger.info(f"Login failed, unknown username={req.username}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )

    valid = await asyncio.to_thread(
        verify_password, req.password, user.get("password_hash") or ""
    )
    if not valid:
        logger.info(f"Login failed, bad password for user id={user['id']}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )

    return _login_response(user)


@router.post("/logout")
async def logout():
    """Log out (client side: drop the token and close the socket)."""
    return {"success": True, "message": "Logged out"}


@router.get("/me", response_model=AuthMeResponse)
async def me(user: Optional[dict] = Depends(get_current_user)):
    """Authenticated user's details."""
    if user is None:
        return AuthMeResponse(success=True, data=None)

    return AuthMeResponse(success=True, data=UserResponse(**public_user(user)))


@router.post("/register", response_model=LoginResponse)
async def register(req: RegisterRequest, request: Request, store: RecordStore = Depends(get_store)):
    """Register a new user in a community and return a token."""
    if await store.find("user", {"username": req.username}, limit=1):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Username already taken"
        )

    hashed_password = await asyncio.to_thread(get_password_hash, req.password)
    try:
        user = await store.create(
            "user",
            {
                "username": req.username,
                "password_hash": hashed_password,
                "community": req.community.strip(),
            },
        )
    except Conflict:
        # a concurrent registration took the name after the check above
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Username already taken"
        )
    logger.info(
        f"Registered user id={user['id']} community={user['community']} from {request.client.host if request.client else '?'}"
    )
    return _login_response(user)
