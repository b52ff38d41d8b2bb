"""Lifecycle of a match between one request and one donor."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, FrozenSet

from ..errors import InvalidTransition
from ..models.common import StatusEntry
from ..models.match import MATCH_TERMINAL_STATUSES, Match


MATCH_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "proposed": frozenset({"pending_confirmation", "rejected", "failed"}),
    "pending_confirmation": frozenset({"confirmed", "rejected", "failed"}),
    "confirmed": frozenset({"in_transit", "failed"}),
    "in_transit": frozenset({"delivered", "failed"}),
    "delivered": frozenset({"transplanted", "failed"}),
    "transplanted": frozenset(),
    "rejected": frozenset(),
    "failed": frozenset(),
}

# status the owning request follows when a match enters the key
REQUEST_FOLLOWS: Dict[str, str] = {
    "confirmed": "in_progress",
    "rejected": "searching",
    "failed": "searching",
    "transplanted": "completed",
}


def is_terminal(status: str) -> bool:
    return status in MATCH_TERMINAL_STATUSES


def can_transition(current: str, target: str) -> bool:
    return target in MATCH_TRANSITIONS.get(current, frozenset())


def companion_request_status(target: str) -> str | None:
    return REQUEST_FOLLOWS.get(target)


def transition(
    match: Match,
    target: str,
    actor_id: str,
    now: datetime,
    note: str = "",
) -> Match:
    if is_terminal(match.status):
        raise InvalidTransition("match", match.status, target, "match is closed")
    if not can_transition(match.status, target):
        raise InvalidTransition("match", match.status, target)
    entry = StatusEntry(status=target, actor_id=actor_id, timestamp=now, note=note)
    return match.model_copy(
        update={"status": target, "status_history": [*match.status_history, entry]},
        deep=True,
    )
