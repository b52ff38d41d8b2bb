from __future__ import annotations

from datetime import datetime
from typing import Collection, Dict, List, Protocol, Tuple, Type, TypeVar

from ..models.common import Record
from ..models.donor import Donor
from ..models.match import Match, MatchQuery
from ..models.request import DonationRequest, RequestQuery, RequestStats


RECORD_TYPES: Dict[str, Type[Record]] = {
    Donor.kind: Donor,
    DonationRequest.kind: DonationRequest,
    Match.kind: Match,
}
COLLECTIONS: Dict[str, str] = {
    Donor.kind: "donors",
    DonationRequest.kind: "requests",
    Match.kind: "matches",
}

R = TypeVar("R", bound=Record)


class PersistenceStore(Protocol):
    """Durable, version-checked storage for donors, requests and matches.

    ``save`` inserts records whose version is 0 and otherwise replaces the
    stored copy only if its version still equals the record's. It returns
    the record with the bumped version, or raises ``VersionConflict``.
    ``delete`` is version-checked the same way. ``find_requests`` sorts by
    ``required_by`` (unset first) and ``find_matches`` newest first; both
    return one page plus the total count. Driver failures surface as
    ``StorageError``.
    """

    async def load(self, kind: str, record_id: str) -> Record: ...

    async def save(self, record: R) -> R: ...

    async def delete(self, kind: str, record_id: str, version: int) -> None: ...

    async def list_donors(
        self, available_only: bool = True, blood_types: Collection[str] | None = None
    ) -> List[Donor]: ...

    async def list_matches(self, request_id: str | None = None, donor_id: str | None = None) -> List[Match]: ...

    async def find_requests(
        self, query: RequestQuery, skip: int = 0, limit: int = 10
    ) -> Tuple[List[DonationRequest], int]: ...

    async def find_matches(self, query: MatchQuery, skip: int = 0, limit: int = 10) -> Tuple[List[Match], int]: ...

    async def request_stats(self, hospital_id: str | None, expiring_before: datetime) -> RequestStats: ...

    async def ensure_indexes(self) -> None: ...


def record_type(kind: str) -> Type[Record]:
    try:
        return RECORD_TYPES[kind]
    except KeyError as exc:
        raise ValueError(f"Unknown record kind {kind!r}") from exc
