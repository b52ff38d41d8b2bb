from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import DuplicateKeyError, ServerSelectionTimeoutError

from conftest import NOW, make_blood_request, make_donor, make_organ_request
from donormatch.errors import DuplicateMatch, NotFound, StorageError, VersionConflict
from donormatch.models.match import Match, MatchQuery, ScoreBreakdown
from donormatch.models.request import RequestQuery
from donormatch.store.memory import InMemoryStore
from donormatch.store.mongo import ACTIVE_PAIR_INDEX, MongoStore, request_filter


def make_match(match_id, status="proposed"):
    return Match(
        _id=match_id,
        request_id="req-1",
        donor_id="donor-a",
        hospital_id="hosp-1",
        resource_kind="blood",
        urgency="routine",
        status=status,
        score=90,
        breakdown=ScoreBreakdown(compatibility=40, distance=20, availability=30, distance_km=12.0),
    )


@pytest.mark.asyncio
async def test_memory_store_versions():
    store = InMemoryStore()
    saved = await store.save(make_blood_request())
    assert saved.version == 1

    again = await store.save(saved.model_copy(update={"notes": "x"}))
    assert again.version == 2
    assert (await store.load("request", "req-1")).notes == "x"

    with pytest.raises(VersionConflict):
        await store.save(make_blood_request())
    with pytest.raises(VersionConflict):
        await store.save(saved)


@pytest.mark.asyncio
async def test_memory_store_not_found():
    store = InMemoryStore()
    with pytest.raises(NotFound):
        await store.load("donor", "ghost")
    with pytest.raises(NotFound):
        await store.save(make_donor("ghost").model_copy(update={"version": 3}))
    with pytest.raises(ValueError):
        await store.load("hospital", "h1")


@pytest.mark.asyncio
async def test_memory_store_returns_copies():
    store = InMemoryStore()
    await store.save(make_blood_request())
    loaded = await store.load("request", "req-1")
    loaded.notes = "changed locally"
    assert (await store.load("request", "req-1")).notes == ""


@pytest.mark.asyncio
async def test_memory_store_one_active_match_per_pair():
    store = InMemoryStore()
    await store.save(make_match("m1"))
    with pytest.raises(DuplicateMatch):
        await store.save(make_match("m2"))
    await store.save(make_match("m3", status="rejected"))
    assert {match.id for match in await store.list_matches(request_id="req-1")} == {"m1", "m3"}


@pytest.mark.asyncio
async def test_memory_store_donor_filters():
    store = InMemoryStore()
    for donor in (
        make_donor("d1", blood_type="O-"),
        make_donor("d2", blood_type="A+"),
        make_donor("d3", blood_type="O-", is_available=False),
    ):
        await store.save(donor)
    assert [donor.id for donor in await store.list_donors()] == ["d1", "d2"]
    assert [donor.id for donor in await store.list_donors(blood_types={"O-"})] == ["d1"]
    assert [donor.id for donor in await store.list_donors(available_only=False)] == ["d1", "d2", "d3"]


@pytest.mark.asyncio
async def test_memory_store_delete_is_version_checked():
    store = InMemoryStore()
    saved = await store.save(make_blood_request())

    with pytest.raises(VersionConflict):
        await store.delete("request", "req-1", saved.version + 1)
    await store.delete("request", "req-1", saved.version)

    with pytest.raises(NotFound):
        await store.load("request", "req-1")
    with pytest.raises(NotFound):
        await store.delete("request", "req-1", saved.version)


@pytest.mark.asyncio
async def test_memory_store_finds_requests_by_deadline():
    store = InMemoryStore()
    for request in (
        make_blood_request(_id="r-late", required_by=NOW + timedelta(days=3)),
        make_blood_request(_id="r-soon", required_by=NOW + timedelta(hours=2)),
        make_blood_request(_id="r-open"),
        make_organ_request(_id="r-kidney", blood_type="O-"),
        make_blood_request(_id="r-elsewhere", hospital_id="hosp-2"),
    ):
        await store.save(request)

    found, total = await store.find_requests(RequestQuery(hospital_id="hosp-1", blood_type="O-"), limit=2)
    assert total == 4
    assert [request.id for request in found] == ["r-kidney", "r-open"]

    found, _ = await store.find_requests(RequestQuery(resource_kind="blood", hospital_id="hosp-1"), skip=2)
    assert [request.id for request in found] == ["r-late"]


@pytest.mark.asyncio
async def test_memory_store_finds_matches_newest_first():
    store = InMemoryStore()
    for offset, match_id in enumerate(("m1", "m2", "m3")):
        match = make_match(match_id).model_copy(
            update={"request_id": f"req-{match_id}", "created_at": NOW + timedelta(minutes=offset)}
        )
        await store.save(match)

    found, total = await store.find_matches(MatchQuery(donor_id="donor-a"), limit=2)
    assert total == 3
    assert [match.id for match in found] == ["m3", "m2"]
    assert await store.find_matches(MatchQuery(status="rejected")) == ([], 0)


def mongo_store(collection):
    database = MagicMock()
    database.get_collection.return_value = collection
    return MongoStore(database)


@pytest.mark.asyncio
async def test_mongo_insert_sets_first_version():
    collection = MagicMock()
    collection.insert_one = AsyncMock()
    store = mongo_store(collection)

    saved = await store.save(make_blood_request())

    assert saved.version == 1
    document = collection.insert_one.await_args.args[0]
    assert document["_id"] == "req-1"
    assert document["version"] == 1


@pytest.mark.asyncio
async def test_mongo_replace_is_version_checked():
    collection = MagicMock()
    collection.replace_one = AsyncMock(return_value=SimpleNamespace(matched_count=1))
    store = mongo_store(collection)
    record = make_blood_request().model_copy(update={"version": 4})

    saved = await store.save(record)

    assert saved.version == 5
    query, document = collection.replace_one.await_args.args
    assert query == {"_id": "req-1", "version": 4}
    assert document["version"] == 5


@pytest.mark.asyncio
async def test_mongo_conflict_and_missing():
    collection = MagicMock()
    collection.replace_one = AsyncMock(return_value=SimpleNamespace(matched_count=0))
    collection.count_documents = AsyncMock(return_value=1)
    store = mongo_store(collection)
    record = make_blood_request().model_copy(update={"version": 2})

    with pytest.raises(VersionConflict):
        await store.save(record)

    collection.count_documents.return_value = 0
    with pytest.raises(NotFound):
        await store.save(record)


@pytest.mark.asyncio
async def test_mongo_duplicate_active_pair():
    collection = MagicMock()
    collection.insert_one = AsyncMock(side_effect=DuplicateKeyError(f"E11000 duplicate key index: {ACTIVE_PAIR_INDEX}"))
    store = mongo_store(collection)
    with pytest.raises(DuplicateMatch):
        await store.save(make_match("m1"))


@pytest.mark.asyncio
async def test_mongo_driver_errors_become_storage_errors():
    collection = MagicMock()
    collection.find_one = AsyncMock(side_effect=ServerSelectionTimeoutError("no servers"))
    store = mongo_store(collection)
    with pytest.raises(StorageError):
        await store.load("request", "req-1")


@pytest.mark.asyncio
async def test_mongo_load_validates_document():
    collection = MagicMock()
    collection.find_one = AsyncMock(return_value={**make_donor("d1").document(), "version": 3})
    store = mongo_store(collection)
    donor = await store.load("donor", "d1")
    assert donor.id == "d1"
    assert donor.version == 3
    assert donor.location.latitude > 0


@pytest.mark.asyncio
async def test_mongo_delete_is_version_checked():
    collection = MagicMock()
    collection.delete_one = AsyncMock(return_value=SimpleNamespace(deleted_count=1))
    store = mongo_store(collection)

    await store.delete("request", "req-1", 2)
    assert collection.delete_one.await_args.args[0] == {"_id": "req-1", "version": 2}

    collection.delete_one.return_value = SimpleNamespace(deleted_count=0)
    collection.count_documents = AsyncMock(return_value=1)
    with pytest.raises(VersionConflict):
        await store.delete("request", "req-1", 2)

    collection.count_documents.return_value = 0
    with pytest.raises(NotFound):
        await store.delete("request", "req-1", 2)


def test_request_filter_covers_both_details():
    query = RequestQuery(hospital_id="hosp-1", status="searching", blood_type="AB-", organ_type="liver")
    assert request_filter(query) == {
        "hospital_id": "hosp-1",
        "status": "searching",
        "$or": [{"blood.blood_type": "AB-"}, {"organ.blood_type": "AB-"}],
        "organ.organ_type": "liver",
    }
    assert request_filter(RequestQuery()) == {}
