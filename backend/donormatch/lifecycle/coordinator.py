from __future__ import annotations

from concurrent.futures import Executor
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from loguru import logger

from ..errors import (
    DonorIneligible,
    DuplicateMatch,
    InvalidTransition,
    InvalidUpdate,
    MatchingError,
    NotAuthorized,
    RecordInUse,
    StaleState,
    VersionConflict,
)
from ..matching.compatibility import MIN_DONATION_INTERVAL_DAYS, check_eligibility, compatible_donor_types
from ..matching.finder import find_candidates_concurrently
from ..matching.scoring import DEFAULT_POLICY, ScoredDonor, ScoringPolicy, score
from ..models.common import ESCALATED_URGENCIES, Record
from ..models.donor import Donor
from ..models.match import Logistics, LogisticsUpdate, Match, MatchQuery, Outcome
from ..models.request import DonationRequest, RequestCreate, RequestQuery, RequestStats, RequestUpdate
from ..models.user import Actor
from ..store.base import PersistenceStore
from ..utils.notifications import EventSink, NotificationEvent
from . import match_machine, request_machine
from .authorization import AuthorizationBoundary, RolePolicy

Change = Tuple[Optional[Record], Record]
COORDINATOR_RECIPIENT = ("coordinators", "on_call")
STAFF_ROLES = frozenset({"admin", "coordinator"})
EXPIRING_WINDOW = timedelta(hours=24)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LifecycleCoordinator:
    """Applies request and match transitions, persists them and announces them.

    Every mutating operation follows the same order: authorize, load, run
    the pure state machines, persist with version checks, then hand the
    resulting events to the notifier. A persistence failure aborts the
    operation before any event is emitted; a notifier failure is logged and
    leaves the persisted state alone.
    """

    def __init__(
        self,
        store: PersistenceStore,
        notifier: EventSink,
        authorization: AuthorizationBoundary | None = None,
        policy: ScoringPolicy = DEFAULT_POLICY,
        clock: Callable[[], datetime] = utcnow,
        min_interval_days: int = MIN_DONATION_INTERVAL_DAYS,
        candidate_limit: int | None = None,
        chunk_size: int = 200,
        executor: Executor | None = None,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.authorization = authorization or RolePolicy()
        self.policy = policy
        self.clock = clock
        self.min_interval_days = min_interval_days
        self.candidate_limit = candidate_limit
        self.chunk_size = chunk_size
        self.executor = executor

    # -- requests -----------------------------------------------------------

    async def create_request(self, payload: RequestCreate, actor: Actor) -> DonationRequest:
        if actor.role == "hospital":
            hospital_id = actor.hospital_id
        elif actor.role in STAFF_ROLES:
            hospital_id = payload.hospital_id
        else:
            raise NotAuthorized("only hospitals and staff may open requests")
        if not hospital_id:
            raise NotAuthorized("a hospital must own the request")

        request = DonationRequest(
            hospital_id=hospital_id,
            hospital_location=payload.hospital_location,
            resource_kind=payload.resource_kind,
            blood=payload.blood,
            organ=payload.organ,
            urgency=payload.urgency,
            required_by=payload.required_by,
            notes=payload.notes,
            created_by=actor.id,
            created_at=self.clock(),
        )
        (saved,) = await self._persist([(None, request)])
        logger.info("Request {} opened by {} ({}, {})", saved.id, actor.id, saved.resource_kind, saved.urgency)
        if saved.urgency in ESCALATED_URGENCIES:
            self._dispatch(
                [
                    NotificationEvent(
                        recipient_kind=COORDINATOR_RECIPIENT[0],
                        recipient_id=COORDINATOR_RECIPIENT[1],
                        kind="request.created",
                        subject=f"{saved.urgency.capitalize()} {saved.resource_kind} request",
                        message=f"Hospital {saved.hospital_id} opened request {saved.id}.",
                        payload={"request_id": saved.id, "hospital_id": saved.hospital_id, "urgency": saved.urgency},
                    )
                ]
            )
        return saved

    async def get_request(self, request_id: str, actor: Actor) -> DonationRequest:
        request = await self.store.load(DonationRequest.kind, request_id)
        self._ensure_access(actor, request)
        return request

    async def update_request_details(self, request_id: str, changes: RequestUpdate, actor: Actor) -> DonationRequest:
        request = await self.get_request(request_id, actor)
        if request_machine.is_terminal(request.status):
            raise InvalidTransition("request", request.status, request.status, "closed requests are read-only")
        if changes.blood is not None and request.resource_kind != "blood":
            raise InvalidUpdate(f"request {request.id} is an organ request; blood details do not apply")
        if changes.organ is not None and request.resource_kind != "organ":
            raise InvalidUpdate(f"request {request.id} is a blood request; organ details do not apply")
        if changes.compatibility_changed(request):
            if any(match.active for match in await self._matches_for(request)):
                raise RecordInUse("request", request.id, "open matches were scored against its current type")
        merged = {**request.model_dump(by_alias=True), **changes.model_dump(exclude_unset=True, exclude_none=True)}
        updated = DonationRequest.model_validate(merged)
        (saved,) = await self._persist([(request, updated)])
        return saved

    async def list_requests(
        self, actor: Actor, query: RequestQuery | None = None, page: int = 1, limit: int = 10
    ) -> Tuple[List[DonationRequest], int]:
        query = query or RequestQuery()
        if actor.role == "hospital":
            query = query.model_copy(update={"hospital_id": self._own_hospital(actor)})
        elif actor.role not in STAFF_ROLES:
            raise NotAuthorized(f"{actor.role} may not list requests")
        return await self.store.find_requests(query, skip=(page - 1) * limit, limit=limit)

    async def request_stats(self, actor: Actor) -> RequestStats:
        if actor.role == "hospital":
            hospital_id = self._own_hospital(actor)
        elif actor.role in STAFF_ROLES:
            hospital_id = None
        else:
            raise NotAuthorized(f"{actor.role} may not read request statistics")
        return await self.store.request_stats(hospital_id, self.clock() + EXPIRING_WINDOW)

    async def delete_request(self, request_id: str, actor: Actor) -> None:
        """Remove a request that never had a match proposed against it."""
        request = await self.get_request(request_id, actor)
        if not self.authorization.may_delete(actor, request):
            raise NotAuthorized(f"{actor.role} may not delete requests")
        if request.match_ids:
            raise RecordInUse("request", request.id, "matches have been proposed against it")
        try:
            await self.store.delete(DonationRequest.kind, request.id, request.version)
        except VersionConflict as exc:
            raise StaleState(str(exc)) from exc
        logger.info("Request {} deleted by {}", request.id, actor.id)

    async def find_candidates(self, request_id: str, actor: Actor) -> List[ScoredDonor]:
        request = await self.get_request(request_id, actor)
        required = request.required_blood_type
        blood_types = compatible_donor_types(required) if required else None
        donors = await self.store.list_donors(available_only=True, blood_types=blood_types)
        candidates = await find_candidates_concurrently(
            request,
            donors,
            self.clock().date(),
            policy=self.policy,
            min_interval_days=self.min_interval_days,
            limit=self.candidate_limit,
            chunk_size=self.chunk_size,
            executor=self.executor,
        )
        logger.info("Request {}: {} candidates from {} donors", request.id, len(candidates), len(donors))
        return candidates

    # -- matches ------------------------------------------------------------

    async def propose_match(self, request_id: str, donor_id: str, actor: Actor, note: str = "") -> Match:
        request = await self.get_request(request_id, actor)
        if request_machine.is_terminal(request.status):
            raise InvalidTransition("request", request.status, "matched", "request is closed")
        if not self.authorization.may_transition(actor, "request", request.status, "matched"):
            raise NotAuthorized(f"{actor.role} may not propose matches")
        donor = await self.store.load(Donor.kind, donor_id)

        existing = await self.store.list_matches(request_id=request.id, donor_id=donor.id)
        if any(match.active for match in existing):
            raise DuplicateMatch(request.id, donor.id)

        now = self.clock()
        eligibility = check_eligibility(request, donor, now.date(), self.min_interval_days)
        if not eligibility:
            raise DonorIneligible(donor.id, eligibility.reason or "ineligible")
        scored = score(request, donor, self.policy)

        match = Match(
            request_id=request.id,
            donor_id=donor.id,
            hospital_id=request.hospital_id,
            donor_user_id=donor.user_id,
            resource_kind=request.resource_kind,
            urgency=request.urgency,
            score=scored.score,
            breakdown=scored.breakdown,
            proposed_by=actor.id,
            created_at=now,
        )

        updated_request = request
        for step in self._steps_to_matched(request.status):
            updated_request = request_machine.transition(
                updated_request, step, actor.id, now, note or f"match {match.id} proposed"
            )
        updated_request = updated_request.model_copy(update={"match_ids": [*updated_request.match_ids, match.id]})

        saved_request, saved_match = await self._persist([(request, updated_request), (None, match)])
        logger.info(
            "Match {} proposed for request {} / donor {} (score {})",
            saved_match.id,
            request.id,
            donor.id,
            saved_match.score,
        )
        events = self._match_events(saved_match, "proposed", actor, note)
        events += self._request_events(
            request, saved_request, actor, note, donor_ids=(), announce_to_hospital=actor.role != "hospital"
        )
        self._dispatch(events)
        return saved_match

    async def get_match(self, match_id: str, actor: Actor) -> Match:
        match = await self.store.load(Match.kind, match_id)
        self._ensure_access(actor, match)
        return match

    async def list_matches(
        self, actor: Actor, query: MatchQuery | None = None, page: int = 1, limit: int = 10
    ) -> Tuple[List[Match], int]:
        query = query or MatchQuery()
        if actor.role == "hospital":
            query = query.model_copy(update={"hospital_id": self._own_hospital(actor)})
        elif actor.role == "donor":
            if not actor.donor_id:
                raise NotAuthorized("donor account is not linked to a donor profile")
            query = query.model_copy(update={"donor_id": actor.donor_id})
        elif actor.role not in STAFF_ROLES:
            raise NotAuthorized(f"{actor.role} may not list matches")
        return await self.store.find_matches(query, skip=(page - 1) * limit, limit=limit)

    async def update_logistics(self, match_id: str, changes: LogisticsUpdate, actor: Actor) -> Match:
        if not self.authorization.may_update_logistics(actor):
            raise NotAuthorized(f"{actor.role} may not update logistics")
        match = await self.get_match(match_id, actor)
        if match_machine.is_terminal(match.status):
            raise InvalidTransition("match", match.status, match.status, "logistics are frozen once a match is closed")
        logistics = Logistics.model_validate(
            {**match.logistics.model_dump(), **changes.model_dump(exclude_unset=True, exclude_none=True)}
        )
        (saved,) = await self._persist([(match, match.model_copy(update={"logistics": logistics}))])
        logger.info("Logistics updated for match {} by {}", saved.id, actor.id)
        return saved

    async def report_outcome(self, match_id: str, successful: bool, notes: str, actor: Actor) -> Match:
        match = await self.store.load(Match.kind, match_id)
        target = "transplanted" if successful else "failed"
        outcome = Outcome(successful=successful, completed_at=self.clock(), reported_by=actor.id, notes=notes)
        return await self._transition_match(match, target, actor, notes, outcome=outcome)

    # -- transitions --------------------------------------------------------

    async def apply_transition(
        self, entity_kind: str, entity_id: str, target: str, actor: Actor, note: str = ""
    ) -> Record:
        if entity_kind == Match.kind:
            match = await self.store.load(Match.kind, entity_id)
            return await self._transition_match(match, target, actor, note)
        if entity_kind == DonationRequest.kind:
            request = await self.store.load(DonationRequest.kind, entity_id)
            return await self._transition_request(request, target, actor, note)
        raise ValueError(f"Unknown entity kind {entity_kind!r}")

    async def _transition_request(
        self, request: DonationRequest, target: str, actor: Actor, note: str
    ) -> DonationRequest:
        self._authorize(actor, request, request.status, target)
        now = self.clock()
        updated = request_machine.transition(request, target, actor.id, now, note)
        active = [match for match in await self._matches_for(request) if match.active]
        changes: List[Change] = [(request, updated)]
        if request_machine.is_terminal(target):
            changes += self._close_matches(active, actor.id, now, note or f"request {request.id} {target}")

        saved = await self._persist(changes)
        saved_request = saved[0]
        logger.info("Request {} {} -> {} by {}", saved_request.id, request.status, saved_request.status, actor.id)

        closed = saved[1:]
        events = self._request_events(
            request,
            saved_request,
            actor,
            note,
            donor_ids=[] if closed else [match.donor_id for match in active],
            announce_to_hospital=actor.role != "hospital",
        )
        for (before, _), stored in zip(changes[1:], closed):
            events += self._match_events(stored, before.status, actor, note)
        self._dispatch(events)
        return saved_request

    async def _transition_match(
        self, match: Match, target: str, actor: Actor, note: str, outcome: Outcome | None = None
    ) -> Match:
        self._authorize(actor, match, match.status, target)
        now = self.clock()
        updated = match_machine.transition(match, target, actor.id, now, note)
        if outcome is not None:
            updated = updated.model_copy(update={"outcome": outcome})
        changes: List[Change] = [(match, updated)]

        request = None
        updated_request = None
        follow = match_machine.companion_request_status(target)
        if follow is not None:
            request = await self.store.load(DonationRequest.kind, match.request_id)
            siblings = [
                other
                for other in await self.store.list_matches(request_id=request.id)
                if other.active and other.id != match.id
            ]
            if follow == "searching" and siblings:
                # another open match still carries the request
                logger.debug(
                    "Request {} stays {} after match {} became {}; {} other matches open",
                    request.id,
                    request.status,
                    match.id,
                    target,
                    len(siblings),
                )
            elif request_machine.can_transition(request.status, follow):
                updated_request = request_machine.transition(
                    request, follow, actor.id, now, note or f"match {match.id} {target}"
                )
                changes.append((request, updated_request))
                if request_machine.is_terminal(follow):
                    changes += self._close_matches(siblings, actor.id, now, f"request {request.id} {follow}")
            else:
                logger.debug(
                    "Request {} stays {} after match {} became {}", request.id, request.status, match.id, target
                )

        saved = await self._persist(changes)
        saved_match = saved[0]
        logger.info("Match {} {} -> {} by {}", saved_match.id, match.status, saved_match.status, actor.id)

        events = self._match_events(saved_match, match.status, actor, note)
        if updated_request is not None:
            events += self._request_events(
                request, saved[1], actor, note, donor_ids=(), announce_to_hospital=actor.role != "hospital"
            )
            for (before, _), stored in zip(changes[2:], saved[2:]):
                events += self._match_events(stored, before.status, actor, stored.status_history[-1].note)
        self._dispatch(events)
        return saved_match

    # -- helpers ------------------------------------------------------------

    @staticmethod
    def _steps_to_matched(status: str) -> Sequence[str]:
        if status == "pending":
            return ("searching", "matched")
        if status == "searching":
            return ("matched",)
        return ()

    @staticmethod
    def _close_matches(matches: Iterable[Match], actor_id: str, now: datetime, note: str) -> List[Change]:
        return [(match, match_machine.transition(match, "failed", actor_id, now, note)) for match in matches]

    @staticmethod
    def _own_hospital(actor: Actor) -> str:
        if not actor.hospital_id:
            raise NotAuthorized("hospital account is not linked to a hospital")
        return actor.hospital_id

    def _ensure_access(self, actor: Actor, record: Record) -> None:
        if not self.authorization.may_access(actor, record):
            raise NotAuthorized(f"{actor.role} {actor.id} may not access {record.kind} {record.id}")

    def _authorize(self, actor: Actor, record: Record, current: str, target: str) -> None:
        self._ensure_access(actor, record)
        if not self.authorization.may_transition(actor, record.kind, current, target):
            raise NotAuthorized(f"{actor.role} may not move {record.kind} from {current} to {target}")

    async def _matches_for(self, request: DonationRequest) -> List[Match]:
        if not request.match_ids:
            return []
        return await self.store.list_matches(request_id=request.id)

    async def _persist(self, changes: List[Change]) -> List[Record]:
        """Save records in order; on failure restore the ones already written."""
        saved: List[Record] = []
        try:
            for _, after in changes:
                saved.append(await self._save(after))
        except MatchingError:
            await self._restore(changes[: len(saved)], saved)
            raise
        return saved

    async def _save(self, record: Record) -> Record:
        try:
            return await self.store.save(record)
        except VersionConflict as exc:
            raise StaleState(str(exc)) from exc

    async def _restore(self, changes: List[Change], saved: List[Record]) -> None:
        for (before, _), stored in reversed(list(zip(changes, saved))):
            if before is None:
                continue
            try:
                await self.store.save(before.model_copy(update={"version": stored.version}))
                logger.warning("Rolled back {} {} after a failed save", stored.kind, stored.id)
            except Exception as exc:
                logger.error("Rollback of {} {} failed: {}", stored.kind, stored.id, exc)

    def _dispatch(self, events: Iterable[NotificationEvent]) -> None:
        for event in events:
            try:
                self.notifier.emit(event)
            except Exception as exc:
                logger.warning(
                    "Notification {} for {} {} not sent: {}", event.kind, event.recipient_kind, event.recipient_id, exc
                )

    def _match_events(self, match: Match, previous: str, actor: Actor, note: str) -> List[NotificationEvent]:
        recipients = []
        if actor.role != "donor":
            recipients.append(("donor", match.donor_id))
        if actor.role != "hospital":
            recipients.append(("hospital", match.hospital_id))
        if match.urgency in ESCALATED_URGENCIES:
            recipients.append(COORDINATOR_RECIPIENT)

        subject = f"Match {match.status.replace('_', ' ')}"
        message = f"Match {match.id} for request {match.request_id} moved from {previous} to {match.status}."
        if match.status == "proposed":
            message = f"You have been proposed as a {match.resource_kind} donor for request {match.request_id}."
        if note:
            message = f"{message} Note: {note}"
        payload = {
            "match_id": match.id,
            "request_id": match.request_id,
            "donor_id": match.donor_id,
            "status": match.status,
            "previous_status": previous,
            "urgency": match.urgency,
            "actor_id": actor.id,
        }
        return [
            NotificationEvent(kind_, id_, f"match.{match.status}", subject, message, dict(payload))
            for kind_, id_ in recipients
        ]

    def _request_events(
        self,
        before: DonationRequest,
        after: DonationRequest,
        actor: Actor,
        note: str,
        donor_ids: Iterable[str],
        announce_to_hospital: bool,
    ) -> List[NotificationEvent]:
        if before.status == after.status:
            return []
        recipients = [("donor", donor_id) for donor_id in donor_ids]
        if announce_to_hospital:
            recipients.append(("hospital", after.hospital_id))
        if after.urgency in ESCALATED_URGENCIES:
            recipients.append(COORDINATOR_RECIPIENT)

        subject = f"Request {after.status.replace('_', ' ')}"
        message = f"Request {after.id} moved from {before.status} to {after.status}."
        if note:
            message = f"{message} Note: {note}"
        payload = {
            "request_id": after.id,
            "hospital_id": after.hospital_id,
            "status": after.status,
            "previous_status": before.status,
            "urgency": after.urgency,
            "actor_id": actor.id,
        }
        return [
            NotificationEvent(kind_, id_, f"request.{after.status}", subject, message, dict(payload))
            for kind_, id_ in recipients
        ]
