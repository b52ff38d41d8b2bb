from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from ..lifecycle.coordinator import LifecycleCoordinator
from ..models.common import ResourceKind
from ..models.match import LogisticsUpdate, Match, MatchQuery, MatchStatus
from ..models.user import Actor
from ..schemas.match import MatchList, OutcomeReport, ProposeMatch, StatusChange
from ..schemas.request import pagination
from .auth import get_coordinator, get_current_actor, require_roles

router = APIRouter(prefix="/matches", tags=["matches"])
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
ProposingActor = Annotated[Actor, Depends(require_roles("hospital", "coordinator", "admin"))]
Coordinator = Annotated[LifecycleCoordinator, Depends(get_coordinator)]


@router.post("/", response_model=Match, status_code=status.HTTP_201_CREATED)
async def propose_match(payload: ProposeMatch, actor: ProposingActor, coordinator: Coordinator) -> Match:
    return await coordinator.propose_match(payload.request_id, payload.donor_id, actor, payload.notes)


@router.get("/", response_model=MatchList)
async def list_matches(
    actor: CurrentActor,
    coordinator: Coordinator,
    match_status: Annotated[MatchStatus | None, Query(alias="status")] = None,
    resource_kind: ResourceKind | None = None,
    request_id: str | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
) -> MatchList:
    query = MatchQuery(status=match_status, resource_kind=resource_kind, request_id=request_id)
    matches, total = await coordinator.list_matches(actor, query, page=page, limit=limit)
    return MatchList(matches=matches, pagination=pagination(total, page, limit))


@router.get("/{match_id}", response_model=Match)
async def get_match(match_id: str, actor: CurrentActor, coordinator: Coordinator) -> Match:
    return await coordinator.get_match(match_id, actor)


@router.patch("/{match_id}/status", response_model=Match)
async def update_match_status(
    match_id: str, payload: StatusChange, actor: CurrentActor, coordinator: Coordinator
) -> Match:
    return await coordinator.apply_transition(Match.kind, match_id, payload.status, actor, payload.notes)


@router.patch("/{match_id}/logistics", response_model=Match)
async def update_logistics(
    match_id: str, payload: LogisticsUpdate, actor: CurrentActor, coordinator: Coordinator
) -> Match:
    return await coordinator.update_logistics(match_id, payload, actor)


@router.post("/{match_id}/outcome", response_model=Match)
async def report_outcome(
    match_id: str, payload: OutcomeReport, actor: ProposingActor, coordinator: Coordinator
) -> Match:
    return await coordinator.report_outcome(match_id, payload.successful, payload.notes, actor)
