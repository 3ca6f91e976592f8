from datetime import datetime

from pydantic import BaseModel, Field

from dues_ledger.schemas.member_schemas import MemberResponse


class SubgroupCreate(BaseModel):
    """Schema for creating a subgroup; the leader must be an existing member"""

    name: str = Field(..., min_length=1, max_length=255)
    leader_id: int = Field(..., gt=0)


class SubgroupUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    leader_id: int | None = Field(None, gt=0)


class SubgroupResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    name: str
    leader_id: int
    created_by: str | None
    created_at: datetime
    updated_at: datetime


class LeaderSummary(BaseModel):
    id: int
    name: str
    member_code: str | None
    email: str | None


class SubgroupStats(BaseModel):
    """Collection figures for a subgroup; id is None for unassigned members"""

    id: int | None
    name: str
    leader: LeaderSummary | None
    total_collected: float
    total_members: int
    average_per_member: float


class SubgroupDetailResponse(BaseModel):
    subgroup: SubgroupResponse
    leader: LeaderSummary | None
    members: list[MemberResponse]
    stats: SubgroupStats
