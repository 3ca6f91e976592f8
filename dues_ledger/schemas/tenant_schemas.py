from datetime import datetime

from pydantic import BaseModel, Field

from dues_ledger.models.role import TenantAccess, TenantStatus

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class TenantBranding(BaseModel):
    """Branding supplied at registration"""

    name: str | None = Field(None, max_length=255)
    logo: str | None = None
    primary_color: str | None = Field(None, pattern=r"^#[0-9A-Fa-f]{6}$")
    secondary_color: str | None = Field(None, pattern=r"^#[0-9A-Fa-f]{6}$")


class TenantContact(BaseModel):
    """Organization contact details"""

    email: str | None = Field(None, max_length=255, pattern=EMAIL_PATTERN)
    phone: str | None = Field(None, max_length=50)
    address: str | None = Field(None, max_length=500)


class TenantRegister(BaseModel):
    """Public self-registration of a new organization"""

    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=1, max_length=100, pattern=r"^[a-z0-9-]+$")
    storage_id: str | None = Field(
        None,
        min_length=1,
        max_length=100,
        pattern=r"^[a-z0-9_-]+$",
        description="Partition identifier (defaults to the slug)",
    )
    admin_username: str = Field(..., min_length=1, max_length=255)
    admin_email: str | None = Field(None, max_length=255, pattern=EMAIL_PATTERN)
    contact: TenantContact | None = None
    branding: TenantBranding | None = None


class TenantUpdate(BaseModel):
    """
    Update mutable tenant fields (system only).

    slug, storage_id and status are not accepted here; status changes go
    through the lifecycle endpoints.
    """

    model_config = {"extra": "forbid"}

    name: str | None = Field(None, min_length=1, max_length=255)
    contact: dict | None = None
    config: dict | None = None


class TenantRejectRequest(BaseModel):
    """Reject a pending registration"""

    reason: str = Field(..., min_length=1, max_length=1000)


class TenantResponse(BaseModel):
    """Tenant details response"""

    id: int
    name: str
    slug: str
    storage_id: str
    status: TenantStatus
    rejection_reason: str | None
    approved_at: datetime | None
    config: dict
    contact: dict
    deleted_at: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TenantRegisterResponse(BaseModel):
    """Result of a self-registration"""

    tenant: TenantResponse
    admin_user_id: int
    admin_username: str
    message: str


class CurrentTenantResponse(BaseModel):
    """Tenant the caller acts for, with its access level"""

    tenant: TenantResponse
    access: TenantAccess
    can_write: bool
