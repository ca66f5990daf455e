from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import jwt

from auth_provider.platform.config import Settings


@dataclass(frozen=True)
class SessionIdentity:
    """Who is calling, as carried by the bearer token."""

    user_id: int
    email: Optional[str] = None
    roles: List[str] = field(default_factory=list)

    def has_role(self, role: str) -> bool:
        return role in self.roles


def create_access_token(
    settings: Settings,
    user_id: int,
    email: Optional[str] = None,
    roles: Optional[List[str]] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a JWT access token"""
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {
        "sub": str(user_id),
        "email": email,
        "roles": roles or [],
        "exp": expire,
        "iat": now,
    }
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(settings: Settings, token: str) -> SessionIdentity:
    """Decode and verify a JWT access token"""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise ValueError("Token has expired")
    except jwt.PyJWTError:
        raise ValueError("Invalid token")

    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise ValueError("Invalid token subject")

    roles = payload.get("roles") or []
    if not isinstance(roles, list):
        raise ValueError("Invalid token roles")

    return SessionIdentity(user_id=user_id, email=payload.get("email"), roles=[str(r) for r in roles])
