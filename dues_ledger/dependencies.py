import logging

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from dues_ledger.config import Settings
from dues_ledger.core.exceptions import ForbiddenException, UnauthorizedException
from dues_ledger.core.security import decode_jwt
from dues_ledger.database import get_db
from dues_ledger.models.role import UserRole
from dues_ledger.models.tenant_context import Principal, TenantContext
from dues_ledger.repositories.model_set import ModelSet, get_models
from dues_ledger.repositories.user_repository import UserRepository
from dues_ledger.services.contribution_service import ContributionService
from dues_ledger.services.expenditure_service import ExpenditureService
from dues_ledger.services.member_service import MemberService
from dues_ledger.services.report_service import ReportService
from dues_ledger.services.subgroup_service import SubgroupService
from dues_ledger.services.tenant_context_service import TenantContextResolver, ensure_claim_matches
from dues_ledger.services.tenant_service import TenantService

logger = logging.getLogger(__name__)

# auto_error=False so a missing header is a 401 from our own handler, not a 403
security = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_resolver(request: Request) -> TenantContextResolver:
    return request.app.state.resolver


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Principal:
    """
    FastAPI dependency to validate JWT and get/create the principal.

    Flow:
    1. Extract token from Authorization: Bearer <token>
    2. Validate JWT using shared SECRET_KEY
    3. Get or auto-create the User record from the 'sub' and 'role' claims
    4. Reconcile the 'tenant_id' claim with the persisted binding
    5. Return the Principal for use in endpoints

    Raises:
        UnauthorizedException: If token missing, invalid or expired
        ForbiddenException: If the token's tenant differs from the user's
    """
    if credentials is None:
        raise UnauthorizedException("Not authenticated")

    payload = decode_jwt(credentials.credentials, settings.SECRET_KEY, settings.JWT_ALGORITHM)

    try:
        role = UserRole(payload.get("role") or UserRole.ADMIN.value)
    except ValueError:
        raise UnauthorizedException("Token has unknown role")

    user = await UserRepository(db).get_or_create(payload["sub"], role=role, email=payload.get("email"))

    if user.role == UserRole.SYSTEM:
        tenant_id = None
    else:
        tenant_id = ensure_claim_matches(payload.get("tenant_id"), user.tenant_id)

    return Principal(user_id=user.id, username=user.username, role=user.role, tenant_id=tenant_id)


async def require_system(principal: Principal = Depends(get_current_principal)) -> Principal:
    """Allow only system administrators."""
    if not principal.is_system:
        raise ForbiddenException("System administrator access required")
    return principal


async def get_tenant_context(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    resolver: TenantContextResolver = Depends(get_resolver),
) -> TenantContext:
    """
    FastAPI dependency resolving the caller's tenant context.

    Runs before any tenant data access; endpoints that depend on it never
    see an unresolved tenant.

    Raises:
        ForbiddenException: For system principals, which act outside tenants
        TenantError: If the tenant cannot be used (see TenantContextResolver)
    """
    context = await resolver.resolve(principal, db)
    if context is None:
        raise ForbiddenException("System administrators do not act inside a tenant")
    return context


def get_model_set(context: TenantContext = Depends(get_tenant_context)) -> ModelSet:
    return get_models(context)


def get_tenant_service(
    db: AsyncSession = Depends(get_db),
    resolver: TenantContextResolver = Depends(get_resolver),
) -> TenantService:
    return TenantService(db, resolver)


def get_member_service(context: TenantContext = Depends(get_tenant_context)) -> MemberService:
    return MemberService(context)


def get_contribution_service(
    context: TenantContext = Depends(get_tenant_context),
) -> ContributionService:
    return ContributionService(context)


def get_report_service(context: TenantContext = Depends(get_tenant_context)) -> ReportService:
    return ReportService(context)


def get_subgroup_service(context: TenantContext = Depends(get_tenant_context)) -> SubgroupService:
    return SubgroupService(context)


def get_expenditure_service(
    context: TenantContext = Depends(get_tenant_context),
) -> ExpenditureService:
    return ExpenditureService(context)
