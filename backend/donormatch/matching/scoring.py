from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Tuple

from pydantic import BaseModel, Field

from ..models.common import GeoPoint
from ..models.donor import Donor
from ..models.match import ScoreBreakdown
from ..models.request import DonationRequest


EARTH_RADIUS_KM = 6371.0


class ScoringPolicy(BaseModel):
    """Fixed point values used to rank eligible donors.

    ``distance_tiers`` is a sequence of ``(upper_bound_km, points)`` pairs in
    ascending order; a distance earns the points of the first tier whose
    bound it is strictly below, and nothing past the last one.
    """

    compatibility_points: int = 40
    distance_tiers: Tuple[Tuple[float, int], ...] = ((10.0, 30), (25.0, 20), (50.0, 10))
    availability_points: Dict[str, int] = Field(default_factory=lambda: {"immediate": 30, "flexible": 20})
    default_availability_points: int = 10
    max_score: int = 100


DEFAULT_POLICY = ScoringPolicy()


@dataclass(frozen=True)
class ScoredDonor:
    donor: Donor
    score: int
    breakdown: ScoreBreakdown

    @property
    def distance_km(self) -> float:
        return self.breakdown.distance_km


def haversine_km(origin: GeoPoint, target: GeoPoint) -> float:
    lat1, lat2 = math.radians(origin.latitude), math.radians(target.latitude)
    d_lat = lat2 - lat1
    d_lon = math.radians(target.longitude - origin.longitude)
    a = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_points(distance_km: float, policy: ScoringPolicy = DEFAULT_POLICY) -> int:
    for bound, points in policy.distance_tiers:
        if distance_km < bound:
            return points
    return 0


def availability_points(availability: str, policy: ScoringPolicy = DEFAULT_POLICY) -> int:
    return policy.availability_points.get(availability, policy.default_availability_points)


def score(request: DonationRequest, donor: Donor, policy: ScoringPolicy = DEFAULT_POLICY) -> ScoredDonor:
    """Score a donor that already passed the compatibility filter."""
    distance_km = haversine_km(request.hospital_location, donor.location)
    breakdown = ScoreBreakdown(
        compatibility=policy.compatibility_points,
        distance=distance_points(distance_km, policy),
        availability=availability_points(donor.availability, policy),
        distance_km=distance_km,
    )
    total = breakdown.compatibility + breakdown.distance + breakdown.availability
    return ScoredDonor(donor=donor, score=max(0, min(policy.max_score, total)), breakdown=breakdown)
