from fastapi import APIRouter, Depends, Query, status

from dues_ledger.dependencies import get_contribution_service
from dues_ledger.schemas.contribution_schemas import (
    ContributionCreate,
    ContributionRecordedResponse,
    ContributionResponse,
    ContributionTypeCreate,
    ContributionTypeResponse,
)
from dues_ledger.services.contribution_service import ContributionService

types_router = APIRouter()
router = APIRouter()


@types_router.get("/", response_model=list[ContributionTypeResponse])
async def list_contribution_types(service: ContributionService = Depends(get_contribution_service)):
    """Contribution types, the system Dues type first"""
    return await service.list_types()


@types_router.post("/", response_model=ContributionTypeResponse, status_code=status.HTTP_201_CREATED)
async def create_contribution_type(
    data: ContributionTypeCreate,
    service: ContributionService = Depends(get_contribution_service),
):
    """Create a contribution type; returns 409 if the name exists"""
    return await service.create_type(data)


@types_router.delete("/{type_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_contribution_type(
    type_id: int,
    service: ContributionService = Depends(get_contribution_service),
):
    """
    Delete a contribution type.

    - The Dues type cannot be deleted
    - Types with recorded contributions cannot be deleted
    """
    await service.delete_type(type_id)


@router.get("/", response_model=list[ContributionResponse])
async def list_contributions(
    contribution_type_id: int | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    service: ContributionService = Depends(get_contribution_service),
):
    return await service.list_contributions(
        contribution_type_id=contribution_type_id, limit=limit, offset=offset
    )


@router.post("/", response_model=ContributionRecordedResponse, status_code=status.HTTP_201_CREATED)
async def record_contribution(
    data: ContributionCreate,
    service: ContributionService = Depends(get_contribution_service),
):
    """
    Record a contribution and issue its receipt.

    - A Dues contribution with a member also counts as a dues payment
    """
    result = await service.record_contribution(data)
    return ContributionRecordedResponse(contribution=result.contribution, receipt=result.receipt)
