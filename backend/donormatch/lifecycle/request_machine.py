"""Lifecycle of a donation request.

pending -> searching -> matched -> in_progress -> completed, with cancelled
reachable from every non-terminal status. A rejected or failed match sends
the request back to searching unless another of its matches is still open.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, FrozenSet

from ..errors import InvalidTransition
from ..models.common import StatusEntry
from ..models.request import DonationRequest


REQUEST_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"searching", "cancelled"}),
    "searching": frozenset({"matched", "cancelled"}),
    "matched": frozenset({"in_progress", "searching", "cancelled"}),
    "in_progress": frozenset({"completed", "searching", "cancelled"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}
REQUEST_TERMINAL_STATUSES = frozenset(status for status, targets in REQUEST_TRANSITIONS.items() if not targets)


def is_terminal(status: str) -> bool:
    return status in REQUEST_TERMINAL_STATUSES


def can_transition(current: str, target: str) -> bool:
    return target in REQUEST_TRANSITIONS.get(current, frozenset())


def transition(
    request: DonationRequest,
    target: str,
    actor_id: str,
    now: datetime,
    note: str = "",
) -> DonationRequest:
    """Return a copy of ``request`` moved to ``target``.

    The input is left untouched; the copy carries one more history entry.
    """
    if is_terminal(request.status):
        raise InvalidTransition("request", request.status, target, "request is closed")
    if not can_transition(request.status, target):
        raise InvalidTransition("request", request.status, target)
    entry = StatusEntry(status=target, actor_id=actor_id, timestamp=now, note=note)
    return request.model_copy(
        update={"status": target, "status_history": [*request.status_history, entry]},
        deep=True,
    )
