"""Bearer token issuing and verification."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt

from .errors import AuthenticationError
from .models import Role, User


@dataclass(frozen=True)
class Principal:
    """Identity resolved from a verified bearer token."""

    id: int
    role: Role


class TokenAuth:
    """Stateless JWT authentication; every request re-verifies the token."""

    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = "HS256",
        ttl: timedelta = timedelta(hours=1),
    ) -> None:
        if not secret:
            raise ValueError("A signing secret must be provided")
        self._secret = secret
        self._algorithm = algorithm
        self._ttl = ttl
        self._bearer = HTTPBearer(auto_error=False)

    def issue(self, user: User, *, now: Optional[datetime] = None) -> str:
        issued_at = now or datetime.now(timezone.utc)
        claims: Dict[str, Any] = {
            "id": user.id,
            "role": user.role.value,
            "iat": issued_at,
            "exp": issued_at + self._ttl,
        }
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def decode(self, token: str) -> Principal:
        try:
            claims = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except ExpiredSignatureError as exc:
            raise AuthenticationError("Token has expired") from exc
        except JWTError as exc:
            raise AuthenticationError("Token is not valid") from exc

        try:
            return Principal(id=int(claims["id"]), role=Role(claims["role"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise AuthenticationError("Token is not valid") from exc

    def authenticate_header(self, header: Optional[str]) -> Principal:
        """Resolve a raw ``Authorization`` header value."""

        if not header:
            raise AuthenticationError("No token, authorization denied")
        parts = header.strip().split(" ", 1)
        if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
            raise AuthenticationError("No token, authorization denied")
        return self.decode(parts[1].strip())

    async def __call__(self, request: Request) -> Principal:
        credentials: HTTPAuthorizationCredentials | None = await self._bearer(request)  # type: ignore[assignment]
        if credentials is None or credentials.scheme.lower() != "bearer":
            raise AuthenticationError("No token, authorization denied")
        return self.decode(credentials.credentials)


__all__ = ["Principal", "TokenAuth"]
