from __future__ import annotations

from datetime import date
from typing import ClassVar, List, Literal

from pydantic import BaseModel, Field

from .common import BloodType, GeoPoint, OrganType, Record


AvailabilityClass = Literal["immediate", "flexible", "scheduled", "limited"]
Weekday = Literal["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


class OrganAvailability(BaseModel):
    organ_type: OrganType
    is_available: bool = True


class TimeSlot(BaseModel):
    start: str = Field(pattern=r"^\d{2}:\d{2}$")
    end: str = Field(pattern=r"^\d{2}:\d{2}$")


class AvailabilitySchedule(BaseModel):
    start_date: date | None = None
    end_date: date | None = None
    recurring_days: List[Weekday] = Field(default_factory=list)
    time_slots: List[TimeSlot] = Field(default_factory=list)


class Donor(Record):
    kind: ClassVar[str] = "donor"

    user_id: str
    name: str
    phone: str | None = None
    blood_type: BloodType
    organ_donatable: List[OrganAvailability] = Field(default_factory=list)
    is_available: bool = True
    availability: AvailabilityClass = "flexible"
    availability_schedule: AvailabilitySchedule | None = None
    last_donation_date: date | None = None
    location: GeoPoint

    def can_donate_organ(self, organ_type: str) -> bool:
        return any(
            entry.organ_type == organ_type and entry.is_available for entry in self.organ_donatable
        )
