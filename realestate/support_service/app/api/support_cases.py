"""HTTP routes for support cases."""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Query, status

from ..dependencies import get_caller, get_service
from ..roles import Caller, SeenTrack
from ..schemas import (
    CaseCreate,
    CaseOrigin,
    CaseResponse,
    CaseStatus,
    CaseUpdate,
    MessageDeletedResponse,
    SeenUpdateResponse,
    UnseenCountResponse,
)
from ..services import SupportCaseService

router = APIRouter(tags=["support-cases"])

ListingStatus = Literal["active", "closed"]

_STATUS_BY_LISTING = {"active": "open", "closed": "closed"}


@router.post("/support-cases/new", response_model=CaseResponse, status_code=status.HTTP_201_CREATED)
async def create_case(
    payload: CaseCreate,
    caller: Caller = Depends(get_caller),
    service: SupportCaseService = Depends(get_service),
) -> CaseResponse:
    return await service.create_case(payload, caller)


@router.get("/support-cases", response_model=list[CaseResponse])
async def list_cases(
    status_filter: CaseStatus | None = Query(default=None, alias="status"),
    origin: CaseOrigin | None = Query(default=None),
    property_id: str | None = Query(default=None, alias="propertyId"),
    caller: Caller = Depends(get_caller),
    service: SupportCaseService = Depends(get_service),
) -> list[CaseResponse]:
    return await service.list_cases(caller, status=status_filter, origin=origin, property_id=property_id)


@router.get("/support-cases/active", response_model=list[CaseResponse])
async def list_open_b2b_cases(
    caller: Caller = Depends(get_caller),
    service: SupportCaseService = Depends(get_service),
) -> list[CaseResponse]:
    return await service.list_cases(caller, status="open", origin="b2b")


@router.get("/support-cases/closed", response_model=list[CaseResponse])
async def list_closed_b2b_cases(
    caller: Caller = Depends(get_caller),
    service: SupportCaseService = Depends(get_service),
) -> list[CaseResponse]:
    return await service.list_cases(caller, status="closed", origin="b2b")


@router.get("/support-cases-clients/active", response_model=list[CaseResponse])
async def list_open_b2c_cases(
    caller: Caller = Depends(get_caller),
    service: SupportCaseService = Depends(get_service),
) -> list[CaseResponse]:
    return await service.list_cases(caller, status="open", origin="b2c")


@router.get("/support-cases-clients/closed", response_model=list[CaseResponse])
async def list_closed_b2c_cases(
    caller: Caller = Depends(get_caller),
    service: SupportCaseService = Depends(get_service),
) -> list[CaseResponse]:
    return await service.list_cases(caller, status="closed", origin="b2c")


@router.get("/support-cases-properties/{property_id}/{listing}", response_model=list[CaseResponse])
async def list_property_cases(
    property_id: str,
    listing: ListingStatus,
    origin: CaseOrigin | None = Query(default=None),
    caller: Caller = Depends(get_caller),
    service: SupportCaseService = Depends(get_service),
) -> list[CaseResponse]:
    return await service.list_property_cases(
        caller, property_id, status=_STATUS_BY_LISTING[listing], origin=origin
    )


@router.get("/admin/support-cases/{origin}/{bucket}", response_model=list[CaseResponse])
async def list_admin_cases(
    origin: CaseOrigin,
    bucket: CaseStatus,
    caller: Caller = Depends(get_caller),
    service: SupportCaseService = Depends(get_service),
) -> list[CaseResponse]:
    return await service.list_admin_cases(caller, origin=origin, status=bucket)


@router.get("/support-cases/mine", response_model=list[CaseResponse])
async def list_own_cases(
    status_filter: CaseStatus | None = Query(default=None, alias="status"),
    caller: Caller = Depends(get_caller),
    service: SupportCaseService = Depends(get_service),
) -> list[CaseResponse]:
    return await service.list_own_cases(caller, status=status_filter)


@router.get("/support-cases/unseen/count", response_model=UnseenCountResponse)
async def unseen_count(
    caller: Caller = Depends(get_caller),
    service: SupportCaseService = Depends(get_service),
) -> UnseenCountResponse:
    return await service.unseen_count(caller)


@router.put("/mark-all-cases-as-seen", response_model=SeenUpdateResponse)
async def mark_all_cases_as_seen(
    caller: Caller = Depends(get_caller),
    service: SupportCaseService = Depends(get_service),
) -> SeenUpdateResponse:
    return await service.mark_all_seen(caller)


@router.get("/support-cases/{case_id}", response_model=CaseResponse)
async def get_case(
    case_id: str,
    caller: Caller = Depends(get_caller),
    service: SupportCaseService = Depends(get_service),
) -> CaseResponse:
    return await service.get_case(case_id, caller)


@router.put("/support-cases/{case_id}", response_model=CaseResponse)
async def update_case(
    case_id: str,
    payload: CaseUpdate,
    caller: Caller = Depends(get_caller),
    service: SupportCaseService = Depends(get_service),
) -> CaseResponse:
    return await service.update_case(case_id, payload, caller)


@router.put("/support-cases/{case_id}/seen", response_model=SeenUpdateResponse)
@router.put("/support-cases/{case_id}/seen/admin-agent", response_model=SeenUpdateResponse)
async def mark_seen(
    case_id: str,
    caller: Caller = Depends(get_caller),
    service: SupportCaseService = Depends(get_service),
) -> SeenUpdateResponse:
    return await service.mark_seen(case_id, caller)


@router.put("/support-cases/{case_id}/seen-by-admin", response_model=SeenUpdateResponse)
async def mark_seen_by_admin(
    case_id: str,
    caller: Caller = Depends(get_caller),
    service: SupportCaseService = Depends(get_service),
) -> SeenUpdateResponse:
    return await service.mark_seen(case_id, caller, SeenTrack.ADMIN)


@router.put("/support-cases/{case_id}/seen-by-agent", response_model=SeenUpdateResponse)
async def mark_seen_by_agent(
    case_id: str,
    caller: Caller = Depends(get_caller),
    service: SupportCaseService = Depends(get_service),
) -> SeenUpdateResponse:
    return await service.mark_seen(case_id, caller, SeenTrack.AGENT)


@router.put("/support-cases/{case_id}/seen/client", response_model=SeenUpdateResponse)
async def mark_seen_by_client(
    case_id: str,
    caller: Caller = Depends(get_caller),
    service: SupportCaseService = Depends(get_service),
) -> SeenUpdateResponse:
    return await service.mark_seen(case_id, caller, SeenTrack.CLIENT)


@router.delete("/support-cases/{case_id}/messages/{message_id}", response_model=MessageDeletedResponse)
async def delete_message(
    case_id: str,
    message_id: str,
    caller: Caller = Depends(get_caller),
    service: SupportCaseService = Depends(get_service),
) -> MessageDeletedResponse:
    return await service.delete_message(case_id, message_id, caller)
