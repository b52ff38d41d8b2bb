from __future__ import annotations

from typing import Protocol

from ..models.common import Record
from ..models.match import Match
from ..models.request import DonationRequest
from ..models.user import Actor


STAFF_ROLES = frozenset({"admin", "coordinator"})
DONOR_MATCH_TARGETS = frozenset({"pending_confirmation", "confirmed", "rejected"})


class AuthorizationBoundary(Protocol):
    def may_transition(self, actor: Actor, entity_kind: str, current: str, target: str) -> bool: ...

    def may_access(self, actor: Actor, record: Record) -> bool: ...

    def may_update_logistics(self, actor: Actor) -> bool: ...

    def may_delete(self, actor: Actor, record: Record) -> bool: ...


class RolePolicy:
    """Role rules for lifecycle operations.

    Staff may do anything. Hospitals drive their own requests and the
    matches hanging off them. Donors may only accept, confirm or reject
    matches that name them, and never touch requests.
    """

    def may_transition(self, actor: Actor, entity_kind: str, current: str, target: str) -> bool:
        if actor.role in STAFF_ROLES:
            return True
        if actor.role == "hospital":
            return entity_kind in {"request", "match"}
        if actor.role == "donor":
            return entity_kind == "match" and target in DONOR_MATCH_TARGETS
        return False

    def may_access(self, actor: Actor, record: Record) -> bool:
        if actor.role in STAFF_ROLES:
            return True
        if actor.role == "hospital":
            if isinstance(record, (DonationRequest, Match)):
                return actor.hospital_id is not None and record.hospital_id == actor.hospital_id
            return True
        if actor.role == "donor":
            if isinstance(record, Match):
                return actor.donor_id is not None and record.donor_id == actor.donor_id
            return False
        return False

    def may_update_logistics(self, actor: Actor) -> bool:
        return actor.role in STAFF_ROLES or actor.role == "hospital"

    def may_delete(self, actor: Actor, record: Record) -> bool:
        if actor.role in STAFF_ROLES:
            return True
        return actor.role == "hospital" and isinstance(record, DonationRequest) and self.may_access(actor, record)
