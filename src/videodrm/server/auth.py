"""Bearer-token authentication (HS256 JWTs carrying ``userId`` and ``role``)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from typing import Callable, Mapping, Optional

import jwt

from ..access.decision import Role
from ..errors import AuthenticationError

ALGORITHM = "HS256"


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: Role = Role.STUDENT

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


class TokenIssuer:
    def __init__(self, secret: str, ttl: timedelta = timedelta(days=7),
                 clock: Optional[Callable[[], datetime]] = None):
        self._secret = secret
        self.ttl = ttl
        self._clock = clock or (lambda: datetime.now(UTC))

    def issue(self, user_id: str, role: Role | str = Role.STUDENT, ttl: Optional[timedelta] = None) -> str:
        now = self._clock()
        role = role if isinstance(role, Role) else Role.parse(role)
        payload = {
            "userId": user_id,
            "role": role.value,
            "iat": int(now.timestamp()),
            "exp": int((now + (ttl or self.ttl)).timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def verify(self, token: str) -> Principal:
        try:
            claims = jwt.decode(token, self._secret, algorithms=[ALGORITHM])
        except jwt.ExpiredSignatureError as e:
            raise AuthenticationError("Token has expired. Please log in again.", code="token_expired") from e
        except jwt.InvalidTokenError as e:
            raise AuthenticationError("Invalid token", code="invalid_token") from e
        user_id = claims.get("userId") or claims.get("id") or claims.get("sub")
        if not user_id:
            raise AuthenticationError("Token carries no user id", code="invalid_token")
        return Principal(user_id=str(user_id), role=Role.parse(claims.get("role")))


def bearer_token(headers: Mapping[str, str]) -> str:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    value = headers.get("authorization") or ""
    scheme, _, token = value.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Access denied. No token provided.")
    return token.strip()
