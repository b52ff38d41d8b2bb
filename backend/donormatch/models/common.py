from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar, Dict, Literal, Tuple, get_args

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field


BloodType = Literal["O-", "O+", "A-", "A+", "B-", "B+", "AB-", "AB+"]
OrganType = Literal[
    "kidney",
    "liver",
    "heart",
    "lung",
    "pancreas",
    "intestine",
    "cornea",
    "bone",
    "skin",
    "heart_valve",
]
ResourceKind = Literal["blood", "organ"]
Urgency = Literal["routine", "urgent", "emergency", "critical"]

BLOOD_TYPES: Tuple[str, ...] = get_args(BloodType)
ORGAN_TYPES: Tuple[str, ...] = get_args(OrganType)
URGENCY_LEVELS: Tuple[str, ...] = get_args(Urgency)
ESCALATED_URGENCIES = frozenset({"emergency", "critical"})


def new_id() -> str:
    return str(ObjectId())


class GeoPoint(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class StatusEntry(BaseModel):
    status: str
    actor_id: str
    timestamp: datetime
    note: str = ""


class Record(BaseModel):
    """Base for stored documents.

    ``version`` is the optimistic-concurrency token: 0 for a record that was
    never saved, incremented by the store on every successful save.
    """

    model_config = ConfigDict(populate_by_name=True)

    kind: ClassVar[str] = "record"

    id: str = Field(default_factory=new_id, alias="_id")
    version: int = 0

    def document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")
