from fastapi import APIRouter, Depends, Query, status

from dues_ledger.dependencies import get_tenant_context, get_tenant_service, require_system
from dues_ledger.models.role import TenantStatus
from dues_ledger.models.tenant_context import Principal, TenantContext
from dues_ledger.schemas.tenant_schemas import (
    CurrentTenantResponse,
    TenantRegister,
    TenantRegisterResponse,
    TenantRejectRequest,
    TenantResponse,
    TenantUpdate,
)
from dues_ledger.services.tenant_service import TenantService

router = APIRouter()


@router.post("/register", response_model=TenantRegisterResponse, status_code=status.HTTP_201_CREATED)
async def register_tenant(
    data: TenantRegister,
    service: TenantService = Depends(get_tenant_service),
):
    """
    Register a new organization.

    - Public endpoint, no token required
    - Tenant starts in PENDING status with read-only access until approved
    - Creates the tenant's storage partition and its admin principal
    - Returns 409 if slug, storage id or admin username is taken
    """
    tenant, admin = await service.register_tenant(data)
    return TenantRegisterResponse(
        tenant=TenantResponse.model_validate(tenant),
        admin_user_id=admin.id,
        admin_username=admin.username,
        message="Registration received. Your organization is pending approval.",
    )


@router.get("/me", response_model=CurrentTenantResponse)
async def get_current_tenant(context: TenantContext = Depends(get_tenant_context)):
    """
    Get the tenant the caller acts for.

    - Pending tenants are returned with LIMITED access
    - Rejected, inactive and deleted tenants fail with 403/410
    """
    return CurrentTenantResponse(
        tenant=TenantResponse.model_validate(context.tenant),
        access=context.access,
        can_write=context.can_write(),
    )


@router.get("", response_model=list[TenantResponse])
async def list_tenants(
    status_filter: TenantStatus | None = Query(None, alias="status"),
    include_deleted: bool = Query(False),
    principal: Principal = Depends(require_system),
    service: TenantService = Depends(get_tenant_service),
):
    """List tenants (system only)"""
    return await service.list_tenants(principal, status=status_filter, include_deleted=include_deleted)


@router.get("/{tenant_id}", response_model=TenantResponse)
async def get_tenant(
    tenant_id: int,
    principal: Principal = Depends(require_system),
    service: TenantService = Depends(get_tenant_service),
):
    return await service.get_tenant(principal, tenant_id)


@router.patch("/{tenant_id}", response_model=TenantResponse)
async def update_tenant(
    tenant_id: int,
    tenant_update: TenantUpdate,
    principal: Principal = Depends(require_system),
    service: TenantService = Depends(get_tenant_service),
):
    """
    Update tenant name, contact or config (system only).

    - slug and storage_id are immutable
    """
    return await service.update_tenant(principal, tenant_id, tenant_update)


@router.delete("/{tenant_id}", response_model=TenantResponse)
async def archive_tenant(
    tenant_id: int,
    principal: Principal = Depends(require_system),
    service: TenantService = Depends(get_tenant_service),
):
    """
    Soft-delete a tenant (system only).

    - Status moves to ARCHIVED and deleted_at is stamped
    - The tenant's data is kept; POST /{tenant_id}/restore brings it back
    """
    return await service.archive(principal, tenant_id)


@router.post("/{tenant_id}/approve", response_model=TenantResponse)
async def approve_tenant(
    tenant_id: int,
    principal: Principal = Depends(require_system),
    service: TenantService = Depends(get_tenant_service),
):
    """Approve a pending registration (system only)"""
    return await service.approve(principal, tenant_id)


@router.post("/{tenant_id}/reject", response_model=TenantResponse)
async def reject_tenant(
    tenant_id: int,
    data: TenantRejectRequest,
    principal: Principal = Depends(require_system),
    service: TenantService = Depends(get_tenant_service),
):
    """Reject a pending registration with a reason (system only)"""
    return await service.reject(principal, tenant_id, data.reason)


@router.post("/{tenant_id}/deactivate", response_model=TenantResponse)
async def deactivate_tenant(
    tenant_id: int,
    principal: Principal = Depends(require_system),
    service: TenantService = Depends(get_tenant_service),
):
    return await service.deactivate(principal, tenant_id)


@router.post("/{tenant_id}/activate", response_model=TenantResponse)
async def activate_tenant(
    tenant_id: int,
    principal: Principal = Depends(require_system),
    service: TenantService = Depends(get_tenant_service),
):
    return await service.activate(principal, tenant_id)


@router.post("/{tenant_id}/restore", response_model=TenantResponse)
async def restore_tenant(
    tenant_id: int,
    principal: Principal = Depends(require_system),
    service: TenantService = Depends(get_tenant_service),
):
    """Restore an archived tenant to ACTIVE (system only)"""
    return await service.restore(principal, tenant_id)
