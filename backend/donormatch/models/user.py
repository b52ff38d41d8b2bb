from __future__ import annotations

from typing import Literal, Tuple, get_args

from pydantic import BaseModel


ActorRole = Literal["admin", "coordinator", "hospital", "donor"]
ACTOR_ROLES: Tuple[str, ...] = get_args(ActorRole)


class Actor(BaseModel):
    """The authenticated party performing an operation.

    ``hospital_id`` / ``donor_id`` bind hospital and donor accounts to the
    record they own; staff roles leave both unset.
    """

    id: str
    role: ActorRole
    hospital_id: str | None = None
    donor_id: str | None = None


class TokenPayload(BaseModel):
    sub: str
    role: ActorRole
    hospital_id: str | None = None
    donor_id: str | None = None
    exp: int
