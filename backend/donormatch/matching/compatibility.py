from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Dict, FrozenSet

from ..models.donor import Donor
from ..models.request import DonationRequest


# donor blood type -> recipient blood types it can supply
DONOR_COMPATIBILITY: Dict[str, FrozenSet[str]] = {
    "O-": frozenset({"O-", "O+", "A-", "A+", "B-", "B+", "AB-", "AB+"}),
    "O+": frozenset({"O+", "A+", "B+", "AB+"}),
    "A-": frozenset({"A-", "A+", "AB-", "AB+"}),
    "A+": frozenset({"A+", "AB+"}),
    "B-": frozenset({"B-", "B+", "AB-", "AB+"}),
    "B+": frozenset({"B+", "AB+"}),
    "AB-": frozenset({"AB-", "AB+"}),
    "AB+": frozenset({"AB+"}),
}

MIN_DONATION_INTERVAL_DAYS = 56


@dataclass(frozen=True)
class Eligibility:
    eligible: bool
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.eligible


ELIGIBLE = Eligibility(True)


def can_supply(donor_type: str, recipient_type: str) -> bool:
    return recipient_type in DONOR_COMPATIBILITY.get(donor_type, frozenset())


def compatible_donor_types(recipient_type: str) -> FrozenSet[str]:
    return frozenset(donor for donor, recipients in DONOR_COMPATIBILITY.items() if recipient_type in recipients)


def check_eligibility(
    request: DonationRequest,
    donor: Donor,
    today: date,
    min_interval_days: int = MIN_DONATION_INTERVAL_DAYS,
) -> Eligibility:
    """Decide whether ``donor`` may serve ``request``.

    Ineligibility is an ordinary result carrying a short reason, never an
    exception.
    """
    if not donor.is_available:
        return Eligibility(False, "donor unavailable")

    if request.resource_kind == "blood":
        if not can_supply(donor.blood_type, request.blood.blood_type):
            return Eligibility(False, f"{donor.blood_type} cannot supply {request.blood.blood_type}")
        if donor.last_donation_date is not None:
            elapsed = (today - donor.last_donation_date).days
            if elapsed < min_interval_days:
                return Eligibility(False, f"last donation {elapsed} days ago")
        return ELIGIBLE

    organ = request.organ
    if not donor.can_donate_organ(organ.organ_type):
        return Eligibility(False, f"{organ.organ_type} not available from donor")
    if organ.blood_type and not can_supply(donor.blood_type, organ.blood_type):
        return Eligibility(False, f"{donor.blood_type} cannot supply {organ.blood_type}")
    return ELIGIBLE


def is_eligible(
    request: DonationRequest,
    donor: Donor,
    today: date,
    min_interval_days: int = MIN_DONATION_INTERVAL_DAYS,
) -> bool:
    return check_eligibility(request, donor, today, min_interval_days).eligible
