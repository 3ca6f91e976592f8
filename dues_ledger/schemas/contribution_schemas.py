from datetime import date, datetime

from pydantic import BaseModel, Field

from dues_ledger.schemas.member_schemas import ReceiptResponse


class ContributionTypeCreate(BaseModel):
    """Schema for creating a contribution type"""

    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field("", max_length=1000)


class ContributionTypeResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    name: str
    description: str
    is_system: bool
    created_at: datetime


class ContributionCreate(BaseModel):
    """Schema for recording a contribution"""

    contribution_type_id: int = Field(..., gt=0)
    amount: float = Field(..., gt=0)
    member_id: int | None = Field(None, gt=0)
    contributed_on: date | None = None
    remarks: str = Field("", max_length=1000)


class ContributionResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    contribution_type_id: int
    amount: float
    contributed_on: date
    recorded_by: str
    member_id: int | None
    remarks: str
    receipt_code: str | None
    created_at: datetime


class ContributionRecordedResponse(BaseModel):
    contribution: ContributionResponse
    receipt: ReceiptResponse


class DashboardResponse(BaseModel):
    """Tenant dashboard totals"""

    total_members: int
    members_in_arrears: int
    total_arrears_months: int
    total_dues_collected: float
    total_contributions: float
    total_expenditure: float
    balance: float
    contributions_by_type: dict[str, float]
    expenditure_by_category: dict[str, float]
    subgroups: list[dict]
