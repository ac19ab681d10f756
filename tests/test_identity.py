"""Tests for bearer credential verification."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from community_alert import config
from community_alert.errors import InvalidCredential, MissingCredential, UnknownUser
from community_alert.services.identity import IdentityVerifier
from conftest import insert_user, token_for


@pytest.fixture
def verifier(store):
    return IdentityVerifier(store)


def _token(payload, secret=None):
    return jwt.encode(payload, secret or config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


@pytest.mark.asyncio
async def test_valid_token(db_path, verifier):
    alice = insert_user(db_path, "alice", "oak")

    identity = await verifier.verify(token_for(alice))

    assert identity.user_id == alice["id"]
    assert identity.username == "alice"


@pytest.mark.asyncio
async def test_user_id_claim_is_accepted(db_path, verifier):
    alice = insert_user(db_path, "alice", "oak")

    identity = await verifier.verify(_token({"userId": alice["id"]}))

    assert identity.user_id == alice["id"]


@pytest.mark.asyncio
@pytest.mark.parametrize("token", [None, ""])
async def test_missing_token(verifier, token):
    with pytest.raises(MissingCredential) as exc_info:
        await verifier.verify(token)
    assert exc_info.value.reason == "Authentication error: No token provided"


@pytest.mark.asyncio
async def test_bad_signature(db_path, verifier):
    alice = insert_user(db_path, "alice", "oak")

    with pytest.raises(InvalidCredential) as exc_info:
        await verifier.verify(_token({"sub": str(alice["id"])}, secret="someone-else"))
    assert exc_info.value.reason == "Authentication error: Invalid token"


@pytest.mark.asyncio
async def test_expired_token(db_path, verifier):
    alice = insert_user(db_path, "alice", "oak")
    expired = datetime.now(timezone.utc) - timedelta(minutes=5)

    with pytest.raises(InvalidCredential):
        await verifier.verify(_token({"sub": str(alice["id"]), "exp": expired}))


@pytest.mark.asyncio
async def test_garbage_token(verifier):
    with pytest.raises(InvalidCredential):
        await verifier.verify("not.a.jwt")


@pytest.mark.asyncio
async def test_token_without_user_claim(verifier):
    with pytest.raises(InvalidCredential):
        await verifier.verify(_token({"role": "admin"}))


@pytest.mark.asyncio
async def test_unknown_user(verifier):
    with pytest.raises(UnknownUser) as exc_info:
        await verifier.verify(_token({"sub": "4242"}))
    assert exc_info.value.reason == "Authentication error: User not found"
