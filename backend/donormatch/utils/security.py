from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from jose import JWTError, jwt

from ..database import settings
from ..models.user import Actor, TokenPayload


def create_access_token(actor: Actor, expires_delta: timedelta | None = None) -> str:
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.jwt_expires_min)
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode: Dict[str, Any] = {
        "sub": actor.id,
        "role": actor.role,
        "hospital_id": actor.hospital_id,
        "donor_id": actor.donor_id,
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> TokenPayload:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:  # pragma: no cover - logged upstream
        raise ValueError("Invalid token") from exc
    try:
        return TokenPayload(**payload)
    except Exception as exc:
        raise ValueError("Invalid token payload") from exc
