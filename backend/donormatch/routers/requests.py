from __future__ import annotations

from typing import Annotated, Dict

from fastapi import APIRouter, Depends, Query, status

from ..lifecycle.coordinator import LifecycleCoordinator
from ..models.common import BloodType, OrganType, ResourceKind, Urgency
from ..models.request import DonationRequest, RequestCreate, RequestQuery, RequestStats, RequestStatus, RequestUpdate
from ..models.user import Actor
from ..schemas.match import CandidateList, StatusChange, candidate_document
from ..schemas.request import RequestList, pagination
from .auth import get_coordinator, get_current_actor, require_roles

router = APIRouter(prefix="/requests", tags=["requests"])
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
HospitalOrStaff = Annotated[Actor, Depends(require_roles("hospital", "coordinator", "admin"))]
Coordinator = Annotated[LifecycleCoordinator, Depends(get_coordinator)]


@router.post("/", response_model=DonationRequest, status_code=status.HTTP_201_CREATED)
async def create_request(payload: RequestCreate, actor: HospitalOrStaff, coordinator: Coordinator) -> DonationRequest:
    return await coordinator.create_request(payload, actor)


@router.get("/", response_model=RequestList)
async def list_requests(
    actor: HospitalOrStaff,
    coordinator: Coordinator,
    resource_kind: ResourceKind | None = None,
    request_status: Annotated[RequestStatus | None, Query(alias="status")] = None,
    blood_type: BloodType | None = None,
    organ_type: OrganType | None = None,
    urgency: Urgency | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
) -> RequestList:
    query = RequestQuery(
        resource_kind=resource_kind,
        status=request_status,
        blood_type=blood_type,
        organ_type=organ_type,
        urgency=urgency,
    )
    requests, total = await coordinator.list_requests(actor, query, page=page, limit=limit)
    return RequestList(requests=requests, pagination=pagination(total, page, limit))


@router.get("/stats", response_model=RequestStats)
async def request_stats(actor: HospitalOrStaff, coordinator: Coordinator) -> RequestStats:
    return await coordinator.request_stats(actor)


@router.get("/{request_id}", response_model=DonationRequest)
async def get_request(request_id: str, actor: CurrentActor, coordinator: Coordinator) -> DonationRequest:
    return await coordinator.get_request(request_id, actor)


@router.put("/{request_id}", response_model=DonationRequest)
async def update_request(
    request_id: str, payload: RequestUpdate, actor: HospitalOrStaff, coordinator: Coordinator
) -> DonationRequest:
    return await coordinator.update_request_details(request_id, payload, actor)


@router.delete("/{request_id}")
async def delete_request(request_id: str, actor: HospitalOrStaff, coordinator: Coordinator) -> Dict[str, str]:
    await coordinator.delete_request(request_id, actor)
    return {"msg": "Request removed"}


@router.patch("/{request_id}/status", response_model=DonationRequest)
async def update_request_status(
    request_id: str, payload: StatusChange, actor: HospitalOrStaff, coordinator: Coordinator
) -> DonationRequest:
    return await coordinator.apply_transition(DonationRequest.kind, request_id, payload.status, actor, payload.notes)


@router.get("/{request_id}/candidates", response_model=CandidateList)
async def list_candidates(request_id: str, actor: HospitalOrStaff, coordinator: Coordinator) -> CandidateList:
    candidates = await coordinator.find_candidates(request_id, actor)
    return CandidateList(request_id=request_id, candidates=[candidate_document(item) for item in candidates])
