from fastapi import APIRouter, Depends, Query

from dues_ledger.dependencies import get_model_set, get_report_service
from dues_ledger.repositories.model_set import ModelSet
from dues_ledger.schemas.contribution_schemas import DashboardResponse
from dues_ledger.services.report_service import ReportService

router = APIRouter()


@router.get("/dashboard", response_model=DashboardResponse)
async def get_dashboard(service: ReportService = Depends(get_report_service)):
    """Membership, dues, contribution and expenditure totals for the tenant"""
    return await service.dashboard()


@router.get("/activity")
async def list_activity(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    models: ModelSet = Depends(get_model_set),
):
    """Most recent activity log entries"""
    logs = await models.activity_logs.find(order_by=["-logged_at", "-id"], limit=limit, offset=offset)
    return [log.to_dict() for log in logs]


@router.get("/receipts")
async def list_receipts(
    member_id: int | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    models: ModelSet = Depends(get_model_set),
):
    """Receipts, newest first, with the paying member expanded"""
    filters = {"member_id": member_id} if member_id is not None else {}
    receipts = await models.receipts.find(
        order_by=["-payment_date", "-id"], limit=limit, offset=offset, **filters
    )
    return await models.receipts.expand(receipts, "member_id")
