from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field

from ..matching.scoring import ScoredDonor
from ..models.match import Match, ScoreBreakdown
from .request import Pagination


class Candidate(BaseModel):
    donor_id: str
    name: str
    blood_type: str
    availability: str
    score: int
    breakdown: ScoreBreakdown


class CandidateList(BaseModel):
    request_id: str
    candidates: List[Candidate]


class MatchList(BaseModel):
    matches: List[Match]
    pagination: Pagination


class StatusChange(BaseModel):
    status: str
    notes: str = ""


class ProposeMatch(BaseModel):
    request_id: str
    donor_id: str
    notes: str = ""


class OutcomeReport(BaseModel):
    successful: bool
    notes: str = Field(default="", max_length=2000)


def candidate_document(candidate: ScoredDonor) -> Candidate:
    donor = candidate.donor
    return Candidate(
        donor_id=donor.id,
        name=donor.name,
        blood_type=donor.blood_type,
        availability=donor.availability,
        score=candidate.score,
        breakdown=candidate.breakdown,
    )
