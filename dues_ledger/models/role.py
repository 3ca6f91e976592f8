"""Role and lifecycle enums shared by the registry and the tenant partitions."""

from enum import Enum as PyEnum


class UserRole(str, PyEnum):
    """
    Principal roles.

    - SYSTEM - platform operator, lives outside every tenant (tenant_id is always null)
    - SUPER - organization super admin, bound to exactly one tenant
    - ADMIN - organization admin, bound to exactly one tenant
    """

    SYSTEM = "system"
    SUPER = "super"
    ADMIN = "admin"


class TenantStatus(str, PyEnum):
    """
    Tenant lifecycle.

    pending -> active | rejected
    active <-> inactive
    active | inactive -> archived
    archived -> active (restore only)
    """

    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"
    REJECTED = "rejected"
    ARCHIVED = "archived"


class TenantAccess(str, PyEnum):
    """Access level granted by a resolved tenant context."""

    FULL = "full"
    LIMITED = "limited"


class MemberRole(str, PyEnum):
    MEMBER = "member"
    ADMIN = "admin"
