from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from taskboard.errors import AuthenticationError
from taskboard.models import Role, User
from taskboard.security import Principal, TokenAuth

SECRET = "unit-test-secret"


def _user(role: Role = Role.MANAGER) -> User:
    return User(
        id=42,
        username="Jane",
        email="jane@example.com",
        role=role,
        created_at=datetime.now(timezone.utc),
    )


def test_issued_token_round_trips_identity_and_role() -> None:
    auth = TokenAuth(SECRET)

    token = auth.issue(_user(Role.MANAGER))

    assert auth.decode(token) == Principal(id=42, role=Role.MANAGER)
    claims = jwt.get_unverified_claims(token)
    assert claims["id"] == 42
    assert claims["role"] == "Manager"
    assert claims["exp"] - claims["iat"] == 3600


def test_expired_token_is_rejected() -> None:
    auth = TokenAuth(SECRET, ttl=timedelta(minutes=5))
    token = auth.issue(_user(), now=datetime.now(timezone.utc) - timedelta(hours=1))

    with pytest.raises(AuthenticationError, match="expired"):
        auth.decode(token)


def test_token_signed_with_another_secret_is_rejected() -> None:
    forged = TokenAuth("someone-else").issue(_user(Role.ADMIN))

    with pytest.raises(AuthenticationError, match="not valid"):
        TokenAuth(SECRET).decode(forged)


def test_token_with_unknown_role_is_rejected() -> None:
    token = jwt.encode(
        {"id": 1, "role": "Owner", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
        SECRET,
        algorithm="HS256",
    )

    with pytest.raises(AuthenticationError):
        TokenAuth(SECRET).decode(token)


@pytest.mark.parametrize("header", [None, "", "Bearer", "Bearer   ", "Basic abc"])
def test_missing_or_malformed_header(header) -> None:
    with pytest.raises(AuthenticationError, match="No token"):
        TokenAuth(SECRET).authenticate_header(header)


def test_header_with_bearer_token() -> None:
    auth = TokenAuth(SECRET)
    token = auth.issue(_user(Role.MEMBER))

    assert auth.authenticate_header(f"Bearer {token}").role is Role.MEMBER
    assert auth.authenticate_header(f"bearer {token}").id == 42


def test_secret_is_required() -> None:
    with pytest.raises(ValueError):
        TokenAuth("")
