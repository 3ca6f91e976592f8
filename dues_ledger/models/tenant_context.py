"""Principal and tenant context for request authorization."""

from dataclasses import dataclass
from typing import TYPE_CHECKING

from dues_ledger.models.role import TenantAccess, UserRole
from dues_ledger.models.tenant import Tenant

if TYPE_CHECKING:
    from dues_ledger.storage.pool import TenantHandle


@dataclass(frozen=True)
class Principal:
    """
    Authenticated actor making a request.

    Built from the JWT claims and the persisted User row. `tenant_id` is the
    token claim when present, otherwise the persisted binding (if any).

    Attributes:
        user_id: Registry User id
        username: 'sub' claim
        role: SYSTEM, SUPER or ADMIN
        tenant_id: Tenant the principal acts for, None if unbound
    """

    user_id: int
    username: str
    role: UserRole
    tenant_id: int | None = None

    @property
    def is_system(self) -> bool:
        return self.role == UserRole.SYSTEM


@dataclass
class TenantContext:
    """
    Resolved tenant context for one request.

    Produced by the tenant context resolver after the tenant's status has
    been accepted and its storage handle acquired. Every facade accessor
    is built from this object and scopes its reads and writes to
    `tenant.id`.

    Attributes:
        principal: The authenticated principal
        tenant: The Tenant the principal is acting for
        handle: Live storage handle for the tenant's partition
        access: FULL for active tenants, LIMITED (read-only) for pending ones
    """

    principal: Principal
    tenant: Tenant
    handle: "TenantHandle"
    access: TenantAccess = TenantAccess.FULL

    @property
    def tenant_id(self) -> int:
        return self.tenant.id

    @property
    def limited(self) -> bool:
        return self.access == TenantAccess.LIMITED

    def can_write(self) -> bool:
        """Pending tenants may read their data but not change it."""
        return self.access == TenantAccess.FULL

    def can_read(self) -> bool:
        return True

    def __repr__(self) -> str:
        return (
            f"<TenantContext(user_id={self.principal.user_id}, tenant_id={self.tenant.id}, "
            f"access={self.access.value})>"
        )
