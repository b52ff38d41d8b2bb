from __future__ import annotations

import asyncio
from concurrent.futures import Executor
from datetime import date
from typing import Iterable, List, Sequence, Tuple

from loguru import logger

from ..models.donor import Donor
from ..models.request import DonationRequest
from .compatibility import MIN_DONATION_INTERVAL_DAYS, check_eligibility
from .scoring import DEFAULT_POLICY, ScoredDonor, ScoringPolicy, score


def ranking_key(candidate: ScoredDonor) -> Tuple[int, float, str]:
    return (-candidate.score, candidate.distance_km, candidate.donor.id)


def evaluate(
    request: DonationRequest,
    donors: Iterable[Donor],
    today: date,
    policy: ScoringPolicy = DEFAULT_POLICY,
    min_interval_days: int = MIN_DONATION_INTERVAL_DAYS,
) -> List[ScoredDonor]:
    """Filter then score, in population order."""
    scored = []
    for donor in donors:
        if not check_eligibility(request, donor, today, min_interval_days):
            continue
        scored.append(score(request, donor, policy))
    return scored


def rank(candidates: Iterable[ScoredDonor], limit: int | None = None) -> List[ScoredDonor]:
    ordered = sorted(candidates, key=ranking_key)
    return ordered[:limit] if limit is not None else ordered


def find_candidates(
    request: DonationRequest,
    donors: Iterable[Donor],
    today: date,
    policy: ScoringPolicy = DEFAULT_POLICY,
    min_interval_days: int = MIN_DONATION_INTERVAL_DAYS,
    limit: int | None = None,
) -> List[ScoredDonor]:
    """Rank eligible donors for a request, best first.

    Ties on score are broken by ascending distance, then donor id. An empty
    list is a valid answer.
    """
    return rank(evaluate(request, donors, today, policy, min_interval_days), limit)


def _chunks(donors: Sequence[Donor], size: int) -> List[Sequence[Donor]]:
    return [donors[start : start + size] for start in range(0, len(donors), size)]


async def find_candidates_concurrently(
    request: DonationRequest,
    donors: Sequence[Donor],
    today: date,
    policy: ScoringPolicy = DEFAULT_POLICY,
    min_interval_days: int = MIN_DONATION_INTERVAL_DAYS,
    limit: int | None = None,
    chunk_size: int = 200,
    executor: Executor | None = None,
) -> List[ScoredDonor]:
    """Same result as :func:`find_candidates`, evaluating chunks on an executor."""
    if not donors:
        return []
    loop = asyncio.get_running_loop()
    chunks = _chunks(list(donors), max(1, chunk_size))
    results = await asyncio.gather(
        *(
            loop.run_in_executor(executor, evaluate, request, chunk, today, policy, min_interval_days)
            for chunk in chunks
        )
    )
    merged = [candidate for chunk in results for candidate in chunk]
    logger.debug(
        "Evaluated {} donors in {} chunks for request {}: {} eligible",
        len(donors),
        len(chunks),
        request.id,
        len(merged),
    )
    return rank(merged, limit)
