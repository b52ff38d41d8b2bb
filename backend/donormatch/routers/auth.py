from __future__ import annotations

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import OAuth2PasswordBearer

from ..lifecycle.coordinator import LifecycleCoordinator
from ..models.user import Actor, ActorRole
from ..utils.security import decode_token

# tokens are issued by the identity service; this API only verifies them
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)

_coordinator: LifecycleCoordinator | None = None


def init_coordinator(coordinator: LifecycleCoordinator) -> None:
    global _coordinator
    _coordinator = coordinator


def get_coordinator() -> LifecycleCoordinator:
    if _coordinator is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Coordinator not initialised")
    return _coordinator


async def get_current_actor(token: str | None = Security(oauth2_scheme)) -> Actor:
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing authorization token")
    try:
        payload = decode_token(token)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    return Actor(id=payload.sub, role=payload.role, hospital_id=payload.hospital_id, donor_id=payload.donor_id)


def require_roles(*roles: ActorRole):
    def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if roles and actor.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions for this action",
            )
        return actor

    return dependency
