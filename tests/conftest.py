"""Shared fixtures: record factories, actors, a fixed clock and a recording notifier."""

import math
from datetime import date, datetime, timedelta, timezone

import pytest

from donormatch.lifecycle.coordinator import LifecycleCoordinator
from donormatch.models.common import GeoPoint
from donormatch.models.donor import Donor, OrganAvailability
from donormatch.models.request import BloodDetail, DonationRequest, OrganDetail
from donormatch.models.user import Actor
from donormatch.store.memory import InMemoryStore


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
TODAY = NOW.date()
HOSPITAL_ID = "hosp-1"
ORIGIN = GeoPoint(latitude=0.0, longitude=0.0)


def km_north(km: float) -> GeoPoint:
    """A point ``km`` kilometres due north of the origin."""
    return GeoPoint(latitude=math.degrees(km / 6371.0), longitude=0.0)


def make_donor(donor_id: str = "donor-a", **overrides) -> Donor:
    fields = {
        "_id": donor_id,
        "user_id": f"user-{donor_id}",
        "name": donor_id.replace("-", " ").title(),
        "phone": "+1 555 0100",
        "blood_type": "O-",
        "availability": "immediate",
        "last_donation_date": TODAY - timedelta(days=100),
        "location": km_north(5),
    }
    fields.update(overrides)
    return Donor(**fields)


def make_blood_request(blood_type: str = "O-", **overrides) -> DonationRequest:
    fields = {
        "_id": "req-1",
        "hospital_id": HOSPITAL_ID,
        "hospital_location": ORIGIN,
        "resource_kind": "blood",
        "blood": BloodDetail(blood_type=blood_type),
        "urgency": "urgent",
    }
    fields.update(overrides)
    return DonationRequest(**fields)


def make_organ_request(organ_type: str = "kidney", blood_type: str | None = None, **overrides) -> DonationRequest:
    fields = {
        "_id": "req-organ",
        "hospital_id": HOSPITAL_ID,
        "hospital_location": ORIGIN,
        "resource_kind": "organ",
        "organ": OrganDetail(organ_type=organ_type, blood_type=blood_type),
        "urgency": "routine",
    }
    fields.update(overrides)
    return DonationRequest(**fields)


def organ_donor(donor_id: str, *organs: str, unavailable: tuple = (), **overrides) -> Donor:
    listed = [OrganAvailability(organ_type=organ) for organ in organs]
    listed += [OrganAvailability(organ_type=organ, is_available=False) for organ in unavailable]
    return make_donor(donor_id, organ_donatable=listed, **overrides)


class RecordingNotifier:
    def __init__(self) -> None:
        self.events = []

    def emit(self, event) -> None:
        self.events.append(event)

    def kinds(self):
        return [event.kind for event in self.events]

    def recipients(self, kind=None):
        return [
            (event.recipient_kind, event.recipient_id)
            for event in self.events
            if kind is None or event.kind == kind
        ]


class BrokenNotifier:
    def emit(self, event) -> None:
        raise RuntimeError("notification transport down")


@pytest.fixture
def hospital() -> Actor:
    return Actor(id="user-hosp", role="hospital", hospital_id=HOSPITAL_ID)


@pytest.fixture
def other_hospital() -> Actor:
    return Actor(id="user-other", role="hospital", hospital_id="hosp-2")


@pytest.fixture
def coordinator_actor() -> Actor:
    return Actor(id="user-coord", role="coordinator")


@pytest.fixture
def donor_actor() -> Actor:
    return Actor(id="user-donor-a", role="donor", donor_id="donor-a")


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def engine(store, notifier) -> LifecycleCoordinator:
    return LifecycleCoordinator(store, notifier, clock=lambda: NOW, chunk_size=2)


@pytest.fixture
def today() -> date:
    return TODAY
