from datetime import date, datetime

from pydantic import BaseModel, Field

from dues_ledger.models.role import MemberRole
from dues_ledger.schemas.tenant_schemas import EMAIL_PATTERN


class MemberCreate(BaseModel):
    """Schema for creating a new member"""

    name: str = Field(..., min_length=1, max_length=255)
    member_code: str | None = Field(None, min_length=1, max_length=50)
    subgroup_id: int | None = Field(None, gt=0)
    contact: str | None = Field(None, max_length=100)
    email: str | None = Field(None, max_length=255, pattern=EMAIL_PATTERN)
    role: MemberRole = MemberRole.MEMBER
    join_date: date | None = None
    dues_per_month: float = Field(..., ge=0)


class MemberUpdate(BaseModel):
    """Schema for updating a member; totals change only through payments"""

    name: str | None = Field(None, min_length=1, max_length=255)
    subgroup_id: int | None = Field(None, gt=0)
    contact: str | None = Field(None, max_length=100)
    email: str | None = Field(None, max_length=255, pattern=EMAIL_PATTERN)
    role: MemberRole | None = None
    join_date: date | None = None
    dues_per_month: float | None = Field(None, ge=0)


class MemberResponse(BaseModel):
    """Schema for member response, arrears derived at read time"""

    model_config = {"from_attributes": True}

    id: int
    name: str
    member_code: str | None
    subgroup_id: int | None
    contact: str | None
    email: str | None
    role: MemberRole
    join_date: date
    dues_per_month: float
    total_paid: float
    months_covered: int
    last_payment_date: date | None
    arrears: int
    created_at: datetime
    updated_at: datetime


class MemberListResponse(BaseModel):
    """Schema for list of members"""

    members: list[MemberResponse]
    total: int


class PaymentCreate(BaseModel):
    """Schema for recording a dues payment"""

    amount: float = Field(..., gt=0)
    paid_on: date | None = None
    remarks: str = Field("", max_length=1000)


class PaymentResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    member_id: int
    amount: float
    paid_on: date
    months_covered: int
    recorded_by: str
    created_at: datetime


class ReceiptResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    receipt_code: str
    receipt_type: str
    member_id: int | None
    member_name: str
    amount: float
    dues_per_month: float | None
    months_covered: int | None
    payment_date: date
    recorded_by: str
    remarks: str
    payment_id: int | None
    contribution_id: int | None
    contribution_type_name: str | None


class PaymentRecordedResponse(BaseModel):
    """Result of recording a payment"""

    member: MemberResponse
    payment: PaymentResponse
    receipt: ReceiptResponse
