from datetime import date, datetime

from pydantic import BaseModel, Field


class ExpenditureCreate(BaseModel):
    """Schema for recording an expenditure"""

    title: str = Field(..., min_length=1, max_length=255)
    amount: float = Field(..., gt=0)
    description: str | None = Field(None, max_length=1000)
    category: str | None = Field(None, max_length=100)
    spent_on: date | None = None


class ExpenditureUpdate(BaseModel):
    """Schema for updating an expenditure (partial update)"""

    title: str | None = Field(None, min_length=1, max_length=255)
    amount: float | None = Field(None, gt=0)
    description: str | None = Field(None, max_length=1000)
    category: str | None = Field(None, max_length=100)
    spent_on: date | None = None


class ExpenditureResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    expense_code: str
    title: str
    description: str | None
    amount: float
    category: str | None
    spent_on: date
    spent_by: str
    created_at: datetime
    updated_at: datetime


class ExpenditureSummary(BaseModel):
    """Totals over the filtered expenditures"""

    total: float
    count: int
    by_category: dict[str, float]
