from __future__ import annotations

from datetime import datetime
from typing import ClassVar, List, Literal, Tuple, get_args

from pydantic import BaseModel, Field, computed_field

from .common import GeoPoint, Record, ResourceKind, StatusEntry, Urgency


MatchStatus = Literal[
    "proposed",
    "pending_confirmation",
    "confirmed",
    "in_transit",
    "delivered",
    "transplanted",
    "rejected",
    "failed",
]
MATCH_STATUSES: Tuple[str, ...] = get_args(MatchStatus)
MATCH_TERMINAL_STATUSES = frozenset({"transplanted", "rejected", "failed"})

TransportMethod = Literal["ambulance", "courier", "air", "donor_travel", "other"]


class ScoreBreakdown(BaseModel):
    compatibility: int
    distance: int
    availability: int
    distance_km: float


class Logistics(BaseModel):
    transport_method: TransportMethod | None = None
    scheduled_date: datetime | None = None
    tracking_position: GeoPoint | None = None
    instructions: str | None = None


class LogisticsUpdate(BaseModel):
    transport_method: TransportMethod | None = None
    scheduled_date: datetime | None = None
    tracking_position: GeoPoint | None = None
    instructions: str | None = None


class Outcome(BaseModel):
    successful: bool
    completed_at: datetime
    reported_by: str
    notes: str = ""


class Match(Record):
    kind: ClassVar[str] = "match"

    request_id: str
    donor_id: str
    hospital_id: str
    donor_user_id: str | None = None
    resource_kind: ResourceKind
    urgency: Urgency
    status: MatchStatus = "proposed"
    status_history: List[StatusEntry] = Field(default_factory=list)
    score: int = Field(ge=0, le=100)
    breakdown: ScoreBreakdown
    logistics: Logistics = Field(default_factory=Logistics)
    outcome: Outcome | None = None
    proposed_by: str | None = None
    created_at: datetime | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def active(self) -> bool:
        return self.status not in MATCH_TERMINAL_STATUSES


class MatchQuery(BaseModel):
    """Filters for listing matches; unset fields match everything."""

    hospital_id: str | None = None
    donor_id: str | None = None
    request_id: str | None = None
    status: MatchStatus | None = None
    resource_kind: ResourceKind | None = None

    def matches(self, match: Match) -> bool:
        for name, wanted in self.model_dump(exclude_none=True).items():
            if getattr(match, name) != wanted:
                return False
        return True
