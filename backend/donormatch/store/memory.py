from __future__ import annotations

import asyncio
from collections import Counter
from datetime import datetime
from typing import Collection, Dict, List, Tuple

from ..errors import DuplicateMatch, NotFound, VersionConflict
from ..lifecycle.request_machine import REQUEST_TERMINAL_STATUSES
from ..models.common import ESCALATED_URGENCIES, Record
from ..models.donor import Donor
from ..models.match import Match, MatchQuery
from ..models.request import DonationRequest, RequestQuery, RequestStats
from .base import R, record_type


class InMemoryStore:
    """Process-local store with the same version semantics as MongoStore."""

    def __init__(self) -> None:
        self._records: Dict[Tuple[str, str], Record] = {}
        self._lock = asyncio.Lock()

    async def load(self, kind: str, record_id: str) -> Record:
        record_type(kind)
        stored = self._records.get((kind, record_id))
        if stored is None:
            raise NotFound(kind, record_id)
        snapshot = stored.model_copy(deep=True)
        # yield so concurrent callers interleave the way they would against a database
        await asyncio.sleep(0)
        return snapshot

    async def save(self, record: R) -> R:
        key = (record.kind, record.id)
        async with self._lock:
            current = self._records.get(key)
            if record.version == 0:
                if current is not None:
                    raise VersionConflict(record.kind, record.id, record.version)
            elif current is None:
                raise NotFound(record.kind, record.id)
            elif current.version != record.version:
                raise VersionConflict(record.kind, record.id, record.version)
            if isinstance(record, Match) and record.active:
                self._check_unique_active(record)
            saved = record.model_copy(update={"version": record.version + 1}, deep=True)
            self._records[key] = saved
        return saved.model_copy(deep=True)

    async def delete(self, kind: str, record_id: str, version: int) -> None:
        key = (kind, record_id)
        async with self._lock:
            current = self._records.get(key)
            if current is None:
                raise NotFound(kind, record_id)
            if current.version != version:
                raise VersionConflict(kind, record_id, version)
            del self._records[key]

    def _check_unique_active(self, match: Match) -> None:
        for (kind, record_id), other in self._records.items():
            if kind != Match.kind or record_id == match.id:
                continue
            if other.active and other.request_id == match.request_id and other.donor_id == match.donor_id:
                raise DuplicateMatch(match.request_id, match.donor_id)

    async def list_donors(
        self, available_only: bool = True, blood_types: Collection[str] | None = None
    ) -> List[Donor]:
        donors = [record for (kind, _), record in self._records.items() if kind == Donor.kind]
        if available_only:
            donors = [donor for donor in donors if donor.is_available]
        if blood_types is not None:
            donors = [donor for donor in donors if donor.blood_type in blood_types]
        return [donor.model_copy(deep=True) for donor in sorted(donors, key=lambda item: item.id)]

    async def list_matches(self, request_id: str | None = None, donor_id: str | None = None) -> List[Match]:
        matches = []
        for (kind, _), record in self._records.items():
            if kind != Match.kind:
                continue
            if request_id is not None and record.request_id != request_id:
                continue
            if donor_id is not None and record.donor_id != donor_id:
                continue
            matches.append(record.model_copy(deep=True))
        return matches


    async def find_requests(
        self, query: RequestQuery, skip: int = 0, limit: int = 10
    ) -> Tuple[List[DonationRequest], int]:
        found = [record for record in self._of_kind(DonationRequest.kind) if query.matches(record)]
        found.sort(key=_required_by_key)
        return [record.model_copy(deep=True) for record in found[skip : skip + limit]], len(found)

    async def find_matches(self, query: MatchQuery, skip: int = 0, limit: int = 10) -> Tuple[List[Match], int]:
        found = [record for record in self._of_kind(Match.kind) if query.matches(record)]
        found.sort(key=_newest_first_key)
        return [record.model_copy(deep=True) for record in found[skip : skip + limit]], len(found)

    async def request_stats(self, hospital_id: str | None, expiring_before: datetime) -> RequestStats:
        requests = [
            record
            for record in self._of_kind(DonationRequest.kind)
            if hospital_id is None or record.hospital_id == hospital_id
        ]
        open_requests = [record for record in requests if record.status not in REQUEST_TERMINAL_STATUSES]
        return RequestStats(
            by_status=dict(Counter(record.status for record in requests)),
            by_kind=dict(Counter(record.resource_kind for record in requests)),
            urgent=sum(1 for record in open_requests if record.urgency in ESCALATED_URGENCIES),
            expiring_soon=sum(
                1
                for record in open_requests
                if record.required_by is not None and record.required_by <= expiring_before
            ),
            total=len(requests),
        )

    async def ensure_indexes(self) -> None:
        return None

    def _of_kind(self, kind: str) -> List[Record]:
        return [record for (stored_kind, _), record in self._records.items() if stored_kind == kind]


def _required_by_key(request: DonationRequest):
    # unset deadlines first, as Mongo orders nulls in an ascending sort
    if request.required_by is None:
        return (0, 0.0, request.id)
    return (1, request.required_by.timestamp(), request.id)


def _newest_first_key(match: Match):
    created = match.created_at.timestamp() if match.created_at else 0.0
    return (-created, match.id)
