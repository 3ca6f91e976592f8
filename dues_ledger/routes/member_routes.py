from fastapi import APIRouter, Depends, Query, status

from dues_ledger.dependencies import get_member_service
from dues_ledger.schemas.member_schemas import (
    MemberCreate,
    MemberListResponse,
    MemberResponse,
    MemberUpdate,
    PaymentCreate,
    PaymentRecordedResponse,
    PaymentResponse,
)
from dues_ledger.services.member_service import MemberService

router = APIRouter()


@router.post("/", response_model=MemberResponse, status_code=status.HTTP_201_CREATED)
async def create_member(data: MemberCreate, service: MemberService = Depends(get_member_service)):
    """
    Create a new member.

    - member_code is generated from the organization's initials when omitted
    - Returns 409 if member_code is already used in this tenant
    - Returns 403 while the tenant is pending approval
    """
    return await service.create_member(data)


@router.get("/", response_model=MemberListResponse)
async def list_members(
    search: str | None = Query(None, description="Match name, member code or email"),
    subgroup_id: int | None = Query(None, description="Filter by subgroup ID"),
    limit: int = Query(100, ge=1, le=1000, description="Max results"),
    offset: int = Query(0, ge=0, description="Pagination offset"),
    service: MemberService = Depends(get_member_service),
):
    """List members of the current tenant, arrears computed at read time"""
    members, total = await service.list_members(
        search=search, subgroup_id=subgroup_id, limit=limit, offset=offset
    )
    return MemberListResponse(members=members, total=total)


@router.get("/arrears", response_model=list[MemberResponse])
async def list_members_in_arrears(
    min_months: int = Query(1, ge=1),
    service: MemberService = Depends(get_member_service),
):
    """Members owing at least min_months, most in arrears first"""
    return await service.list_arrears(min_months=min_months)


@router.get("/{member_id}", response_model=MemberResponse)
async def get_member(member_id: int, service: MemberService = Depends(get_member_service)):
    return await service.get_member(member_id)


@router.patch("/{member_id}", response_model=MemberResponse)
async def update_member(
    member_id: int,
    data: MemberUpdate,
    service: MemberService = Depends(get_member_service),
):
    """
    Update a member.

    - Only provided fields are updated (partial update)
    - Totals and months covered change only through payments
    """
    return await service.update_member(member_id, data)


@router.delete("/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_member(member_id: int, service: MemberService = Depends(get_member_service)):
    """Delete a member and its payment history"""
    await service.delete_member(member_id)


@router.get("/{member_id}/payments", response_model=list[PaymentResponse])
async def list_payments(member_id: int, service: MemberService = Depends(get_member_service)):
    """Payment history of a member, newest first"""
    return await service.payment_history(member_id)


@router.post(
    "/{member_id}/payments",
    response_model=PaymentRecordedResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_payment(
    member_id: int,
    data: PaymentCreate,
    service: MemberService = Depends(get_member_service),
):
    """
    Record a dues payment.

    - Months covered = floor(amount / dues_per_month)
    - Member totals, payment history and receipt are written atomically
    """
    result = await service.record_payment(member_id, data)
    return PaymentRecordedResponse(member=result.member, payment=result.payment, receipt=result.receipt)
