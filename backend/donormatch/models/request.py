from __future__ import annotations

from datetime import datetime, timezone
from typing import ClassVar, Dict, List, Literal, Tuple, get_args

from pydantic import BaseModel, Field, field_validator, model_validator

from .common import BloodType, GeoPoint, OrganType, Record, ResourceKind, StatusEntry, Urgency


RequestStatus = Literal["pending", "searching", "matched", "in_progress", "completed", "cancelled"]
REQUEST_STATUSES: Tuple[str, ...] = get_args(RequestStatus)

BloodComponent = Literal["whole_blood", "red_cells", "plasma", "platelets", "cryo"]


class BloodDetail(BaseModel):
    blood_type: BloodType
    component: BloodComponent = "whole_blood"
    quantity: int = Field(default=1, ge=1)


class OrganDetail(BaseModel):
    organ_type: OrganType
    blood_type: BloodType | None = None


def check_detail(resource_kind: str, blood: BloodDetail | None, organ: OrganDetail | None) -> None:
    if resource_kind == "blood":
        if blood is None:
            raise ValueError("blood requests need blood details")
        if organ is not None:
            raise ValueError("blood requests cannot carry organ details")
    elif resource_kind == "organ":
        if organ is None:
            raise ValueError("organ requests need organ details")
        if blood is not None:
            raise ValueError("organ requests cannot carry blood details")


class DonationRequest(Record):
    kind: ClassVar[str] = "request"

    hospital_id: str
    hospital_location: GeoPoint
    resource_kind: ResourceKind
    blood: BloodDetail | None = None
    organ: OrganDetail | None = None
    urgency: Urgency = "routine"
    required_by: datetime | None = None
    notes: str = ""
    status: RequestStatus = "pending"
    status_history: List[StatusEntry] = Field(default_factory=list)
    match_ids: List[str] = Field(default_factory=list)
    created_by: str | None = None
    created_at: datetime | None = None

    @field_validator("required_by")
    @classmethod
    def _deadline_in_utc(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @model_validator(mode="after")
    def _detail_matches_kind(self) -> "DonationRequest":
        check_detail(self.resource_kind, self.blood, self.organ)
        return self

    @property
    def required_blood_type(self) -> str | None:
        if self.resource_kind == "blood" and self.blood:
            return self.blood.blood_type
        if self.organ:
            return self.organ.blood_type
        return None


class RequestCreate(BaseModel):
    hospital_id: str | None = None
    hospital_location: GeoPoint
    resource_kind: ResourceKind
    blood: BloodDetail | None = None
    organ: OrganDetail | None = None
    urgency: Urgency = "routine"
    required_by: datetime | None = None
    notes: str = ""

    @model_validator(mode="after")
    def _detail_matches_kind(self) -> "RequestCreate":
        check_detail(self.resource_kind, self.blood, self.organ)
        return self


class RequestUpdate(BaseModel):
    blood: BloodDetail | None = None
    organ: OrganDetail | None = None
    urgency: Urgency | None = None
    required_by: datetime | None = None
    notes: str | None = None

    def compatibility_changed(self, request: DonationRequest) -> bool:
        """True when applying this update would change who may donate."""
        if self.blood is not None and request.blood is not None:
            return self.blood.blood_type != request.blood.blood_type
        if self.organ is not None and request.organ is not None:
            return (self.organ.organ_type, self.organ.blood_type) != (
                request.organ.organ_type,
                request.organ.blood_type,
            )
        return False


class RequestQuery(BaseModel):
    """Filters for listing requests; unset fields match everything."""

    hospital_id: str | None = None
    resource_kind: ResourceKind | None = None
    status: RequestStatus | None = None
    blood_type: BloodType | None = None
    organ_type: OrganType | None = None
    urgency: Urgency | None = None

    def matches(self, request: DonationRequest) -> bool:
        if self.hospital_id is not None and request.hospital_id != self.hospital_id:
            return False
        if self.resource_kind is not None and request.resource_kind != self.resource_kind:
            return False
        if self.status is not None and request.status != self.status:
            return False
        if self.blood_type is not None and request.required_blood_type != self.blood_type:
            return False
        if self.organ_type is not None and (request.organ is None or request.organ.organ_type != self.organ_type):
            return False
        if self.urgency is not None and request.urgency != self.urgency:
            return False
        return True


class RequestStats(BaseModel):
    by_status: Dict[str, int] = Field(default_factory=dict)
    by_kind: Dict[str, int] = Field(default_factory=dict)
    urgent: int = 0
    expiring_soon: int = 0
    total: int = 0
