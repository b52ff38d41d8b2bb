from __future__ import annotations

from datetime import datetime
from typing import Any, Collection, Dict, List, Tuple

from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pydantic import TypeAdapter
from pymongo import ASCENDING, DESCENDING, IndexModel
from pymongo.errors import DuplicateKeyError, PyMongoError

from ..errors import DuplicateMatch, NotFound, StorageError, VersionConflict
from ..lifecycle.request_machine import REQUEST_TERMINAL_STATUSES
from ..models.common import ESCALATED_URGENCIES, Record
from ..models.donor import Donor
from ..models.match import Match, MatchQuery
from ..models.request import DonationRequest, RequestQuery, RequestStats
from ..utils.logging import log_store_error
from .base import COLLECTIONS, R, record_type

ACTIVE_PAIR_INDEX = "active_request_donor_pair"
_timestamps = TypeAdapter(datetime)


class MongoStore:
    def __init__(self, database: AsyncIOMotorDatabase) -> None:
        self.database = database

    def collection(self, kind: str) -> AsyncIOMotorCollection:
        record_type(kind)
        return self.database.get_collection(COLLECTIONS[kind])

    async def load(self, kind: str, record_id: str) -> Record:
        try:
            document = await self.collection(kind).find_one({"_id": record_id})
        except PyMongoError as exc:
            log_store_error("load", kind, exc, record_id)
            raise StorageError(f"could not load {kind} {record_id}") from exc
        if document is None:
            raise NotFound(kind, record_id)
        return record_type(kind).model_validate(document)

    async def save(self, record: R) -> R:
        collection = self.collection(record.kind)
        document: Dict[str, Any] = {**record.document(), "version": record.version + 1}
        try:
            if record.version == 0:
                await collection.insert_one(document)
            else:
                result = await collection.replace_one({"_id": record.id, "version": record.version}, document)
                if result.matched_count == 0:
                    if await collection.count_documents({"_id": record.id}, limit=1) == 0:
                        raise NotFound(record.kind, record.id)
                    raise VersionConflict(record.kind, record.id, record.version)
        except DuplicateKeyError as exc:
            if isinstance(record, Match) and ACTIVE_PAIR_INDEX in str(exc):
                raise DuplicateMatch(record.request_id, record.donor_id) from exc
            raise VersionConflict(record.kind, record.id, record.version) from exc
        except PyMongoError as exc:
            log_store_error("save", record.kind, exc, record.id)
            raise StorageError(f"could not save {record.kind} {record.id}") from exc
        return record.model_copy(update={"version": record.version + 1}, deep=True)

    async def delete(self, kind: str, record_id: str, version: int) -> None:
        collection = self.collection(kind)
        try:
            result = await collection.delete_one({"_id": record_id, "version": version})
            if result.deleted_count == 0:
                if await collection.count_documents({"_id": record_id}, limit=1) == 0:
                    raise NotFound(kind, record_id)
                raise VersionConflict(kind, record_id, version)
        except PyMongoError as exc:
            log_store_error("delete", kind, exc, record_id)
            raise StorageError(f"could not delete {kind} {record_id}") from exc

    async def list_donors(
        self, available_only: bool = True, blood_types: Collection[str] | None = None
    ) -> List[Donor]:
        query: Dict[str, Any] = {}
        if available_only:
            query["is_available"] = True
        if blood_types is not None:
            query["blood_type"] = {"$in": sorted(blood_types)}
        try:
            cursor = self.collection(Donor.kind).find(query).sort("_id", ASCENDING)
            return [Donor.model_validate(document) async for document in cursor]
        except PyMongoError as exc:
            log_store_error("list", Donor.kind, exc)
            raise StorageError("could not list donors") from exc

    async def list_matches(self, request_id: str | None = None, donor_id: str | None = None) -> List[Match]:
        query: Dict[str, Any] = {}
        if request_id is not None:
            query["request_id"] = request_id
        if donor_id is not None:
            query["donor_id"] = donor_id
        try:
            cursor = self.collection(Match.kind).find(query).sort("created_at", ASCENDING)
            return [Match.model_validate(document) async for document in cursor]
        except PyMongoError as exc:
            log_store_error("list", Match.kind, exc)
            raise StorageError("could not list matches") from exc

    async def find_requests(
        self, query: RequestQuery, skip: int = 0, limit: int = 10
    ) -> Tuple[List[DonationRequest], int]:
        found = request_filter(query)
        collection = self.collection(DonationRequest.kind)
        try:
            cursor = collection.find(found).sort([("required_by", ASCENDING), ("_id", ASCENDING)])
            cursor = cursor.skip(skip).limit(limit)
            requests = [DonationRequest.model_validate(document) async for document in cursor]
            return requests, await collection.count_documents(found)
        except PyMongoError as exc:
            log_store_error("find", DonationRequest.kind, exc)
            raise StorageError("could not list requests") from exc

    async def find_matches(self, query: MatchQuery, skip: int = 0, limit: int = 10) -> Tuple[List[Match], int]:
        found: Dict[str, Any] = query.model_dump(exclude_none=True)
        collection = self.collection(Match.kind)
        try:
            cursor = collection.find(found).sort([("created_at", DESCENDING), ("_id", ASCENDING)])
            cursor = cursor.skip(skip).limit(limit)
            matches = [Match.model_validate(document) async for document in cursor]
            return matches, await collection.count_documents(found)
        except PyMongoError as exc:
            log_store_error("find", Match.kind, exc)
            raise StorageError("could not list matches") from exc

    async def request_stats(self, hospital_id: str | None, expiring_before: datetime) -> RequestStats:
        scope: Dict[str, Any] = {} if hospital_id is None else {"hospital_id": hospital_id}
        still_open = {**scope, "status": {"$nin": sorted(REQUEST_TERMINAL_STATUSES)}}
        # deadlines are stored as UTC ISO strings, so string order is time order
        deadline = _timestamps.dump_python(expiring_before, mode="json")
        collection = self.collection(DonationRequest.kind)
        try:
            return RequestStats(
                by_status=await self._count_by(collection, scope, "status"),
                by_kind=await self._count_by(collection, scope, "resource_kind"),
                urgent=await collection.count_documents(
                    {**still_open, "urgency": {"$in": sorted(ESCALATED_URGENCIES)}}
                ),
                expiring_soon=await collection.count_documents(
                    {**still_open, "required_by": {"$ne": None, "$lte": deadline}}
                ),
                total=await collection.count_documents(scope),
            )
        except PyMongoError as exc:
            log_store_error("stats", DonationRequest.kind, exc)
            raise StorageError("could not count requests") from exc

    @staticmethod
    async def _count_by(collection: AsyncIOMotorCollection, scope: Dict[str, Any], field: str) -> Dict[str, int]:
        pipeline = [{"$match": scope}, {"$group": {"_id": f"${field}", "count": {"$sum": 1}}}]
        return {row["_id"]: row["count"] async for row in collection.aggregate(pipeline)}

    async def ensure_indexes(self) -> None:
        await self.collection(Match.kind).create_indexes(
            [
                IndexModel(
                    [("request_id", ASCENDING), ("donor_id", ASCENDING)],
                    name=ACTIVE_PAIR_INDEX,
                    unique=True,
                    partialFilterExpression={"active": True},
                ),
                IndexModel([("donor_id", ASCENDING)]),
            ]
        )
        await self.collection(Donor.kind).create_index([("is_available", ASCENDING), ("blood_type", ASCENDING)])


def request_filter(query: RequestQuery) -> Dict[str, Any]:
    found: Dict[str, Any] = query.model_dump(exclude_none=True, exclude={"blood_type", "organ_type"})
    if query.blood_type is not None:
        found["$or"] = [{"blood.blood_type": query.blood_type}, {"organ.blood_type": query.blood_type}]
    if query.organ_type is not None:
        found["organ.organ_type"] = query.organ_type
    return found
