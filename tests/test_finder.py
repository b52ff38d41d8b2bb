from datetime import timedelta

import pytest

from conftest import TODAY, km_north, make_blood_request, make_donor
from donormatch.matching.finder import find_candidates, find_candidates_concurrently


def test_end_to_end_blood_ranking():
    request = make_blood_request("O-")
    donor_a = make_donor(
        "donor-a",
        blood_type="O-",
        location=km_north(5),
        availability="immediate",
        last_donation_date=TODAY - timedelta(days=100),
    )
    donor_b = make_donor("donor-b", blood_type="A+", location=km_north(3))

    candidates = find_candidates(request, [donor_a, donor_b], TODAY)

    assert [candidate.donor.id for candidate in candidates] == ["donor-a"]
    assert candidates[0].score == 100
    assert candidates[0].breakdown.compatibility == 40
    assert candidates[0].breakdown.distance == 30
    assert candidates[0].breakdown.availability == 30


def test_sorted_by_score_then_distance_then_id():
    request = make_blood_request("AB+")
    donors = [
        make_donor("d-far", location=km_north(40), availability="immediate"),
        make_donor("d-near-flexible", location=km_north(2), availability="flexible"),
        make_donor("d-tie-b", location=km_north(7), availability="immediate"),
        make_donor("d-tie-a", location=km_north(7), availability="immediate"),
        make_donor("d-closest", location=km_north(1), availability="immediate"),
    ]
    ranked = find_candidates(request, donors, TODAY)

    assert [candidate.donor.id for candidate in ranked] == [
        "d-closest",
        "d-tie-a",
        "d-tie-b",
        "d-near-flexible",
        "d-far",
    ]
    scores = [candidate.score for candidate in ranked]
    assert scores == sorted(scores, reverse=True)


def test_equal_score_prefers_shorter_distance():
    request = make_blood_request("O+")
    nearer = make_donor("z-nearer", blood_type="O+", location=km_north(12))
    farther = make_donor("a-farther", blood_type="O+", location=km_north(20))
    ranked = find_candidates(request, [farther, nearer], TODAY)
    assert ranked[0].score == ranked[1].score
    assert [candidate.donor.id for candidate in ranked] == ["z-nearer", "a-farther"]


def test_no_eligible_donor_gives_empty_list():
    request = make_blood_request("O-")
    donors = [make_donor("d1", blood_type="A+"), make_donor("d2", is_available=False)]
    assert find_candidates(request, donors, TODAY) == []


def test_unavailable_donors_never_returned():
    request = make_blood_request("AB+")
    donors = [make_donor(f"d{index}", is_available=index % 2 == 0) for index in range(6)]
    ranked = find_candidates(request, donors, TODAY)
    assert {candidate.donor.id for candidate in ranked} == {"d0", "d2", "d4"}


def test_limit_truncates_after_sorting():
    request = make_blood_request("AB+")
    donors = [make_donor(f"d{km}", location=km_north(km)) for km in (30, 1, 15)]
    ranked = find_candidates(request, donors, TODAY, limit=2)
    assert [candidate.donor.id for candidate in ranked] == ["d1", "d15"]


@pytest.mark.asyncio
async def test_concurrent_scan_matches_sequential_order():
    request = make_blood_request("AB+")
    donors = [
        make_donor(
            f"donor-{index:02d}",
            blood_type=("O-", "A+", "B-", "AB+")[index % 4],
            location=km_north(index * 3),
            availability=("immediate", "flexible", "limited")[index % 3],
        )
        for index in range(25)
    ]
    sequential = find_candidates(request, donors, TODAY)
    concurrent = await find_candidates_concurrently(request, list(reversed(donors)), TODAY, chunk_size=4)
    assert [candidate.donor.id for candidate in concurrent] == [candidate.donor.id for candidate in sequential]


@pytest.mark.asyncio
async def test_concurrent_scan_of_empty_population():
    assert await find_candidates_concurrently(make_blood_request("O-"), [], TODAY) == []
