from datetime import date

from fastapi import APIRouter, Depends, Query, status

from dues_ledger.dependencies import get_expenditure_service
from dues_ledger.schemas.expenditure_schemas import (
    ExpenditureCreate,
    ExpenditureResponse,
    ExpenditureSummary,
    ExpenditureUpdate,
)
from dues_ledger.services.expenditure_service import ExpenditureService

router = APIRouter()


@router.post("/", response_model=ExpenditureResponse, status_code=status.HTTP_201_CREATED)
async def create_expenditure(
    data: ExpenditureCreate,
    service: ExpenditureService = Depends(get_expenditure_service),
):
    """
    Record an expenditure.

    - expense_code is generated per tenant (EXP-00001, ...)
    - spent_by is the calling principal
    - Returns 403 while the tenant is pending approval
    """
    return await service.create_expenditure(data)


@router.get("/", response_model=list[ExpenditureResponse])
async def list_expenditures(
    start_date: date | None = Query(None, description="Spent on or after"),
    end_date: date | None = Query(None, description="Spent on or before"),
    category: str | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    service: ExpenditureService = Depends(get_expenditure_service),
):
    """Expenditures, most recent first"""
    return await service.list_expenditures(
        start_date=start_date, end_date=end_date, category=category, limit=limit, offset=offset
    )


@router.get("/summary", response_model=ExpenditureSummary)
async def expenditure_summary(
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    category: str | None = Query(None),
    service: ExpenditureService = Depends(get_expenditure_service),
):
    """Total, count and per-category totals of the matching expenditures"""
    return await service.summary(start_date=start_date, end_date=end_date, category=category)


@router.get("/{expenditure_id}", response_model=ExpenditureResponse)
async def get_expenditure(
    expenditure_id: int, service: ExpenditureService = Depends(get_expenditure_service)
):
    return await service.get_expenditure(expenditure_id)


@router.patch("/{expenditure_id}", response_model=ExpenditureResponse)
async def update_expenditure(
    expenditure_id: int,
    data: ExpenditureUpdate,
    service: ExpenditureService = Depends(get_expenditure_service),
):
    """Update an expenditure (partial update)"""
    return await service.update_expenditure(expenditure_id, data)


@router.delete("/{expenditure_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_expenditure(
    expenditure_id: int, service: ExpenditureService = Depends(get_expenditure_service)
):
    await service.delete_expenditure(expenditure_id)
