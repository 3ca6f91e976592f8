class DuesLedgerException(Exception):
    """Base exception for dues ledger"""

    pass


class UnauthorizedException(DuesLedgerException):
    """Raised when JWT validation fails"""

    pass


class NotFoundException(DuesLedgerException):
    """Raised when resource not found"""

    pass


class ForbiddenException(DuesLedgerException):
    """Raised when a principal tries to reach data outside its permissions"""

    pass


class ValidationException(DuesLedgerException):
    """Raised for business logic validation errors"""

    pass


class ConflictError(DuesLedgerException):
    """Raised when a unique field (slug, storage id, member code...) already exists"""

    pass


class InvalidStateTransition(DuesLedgerException):
    """Raised when a tenant lifecycle transition is not an allowed edge"""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move tenant from '{current}' to '{target}'")


class StorageUnavailable(DuesLedgerException):
    """Raised by the handle pool when a tenant partition cannot be opened"""

    def __init__(self, storage_id: str, reason: str = ""):
        self.storage_id = storage_id
        self.reason = reason
        message = f"Storage partition '{storage_id}' is unavailable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class TenantError(DuesLedgerException):
    """
    Base class for tenant resolution failures.

    Carries enough structure for the HTTP layer to render a precise
    message without re-reading the registry.
    """

    kind = "tenant_error"
    default_message = "Tenant error"

    def __init__(
        self,
        message: str | None = None,
        *,
        tenant_id: int | None = None,
        tenant_name: str | None = None,
        tenant_slug: str | None = None,
        reason: str | None = None,
    ):
        self.tenant_id = tenant_id
        self.tenant_name = tenant_name
        self.tenant_slug = tenant_slug
        self.reason = reason
        super().__init__(message or self.default_message)

    @classmethod
    def for_tenant(cls, tenant, message: str | None = None, reason: str | None = None):
        """Build the error from a Tenant row"""
        return cls(
            message,
            tenant_id=tenant.id,
            tenant_name=tenant.name,
            tenant_slug=tenant.slug,
            reason=reason,
        )

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "tenant_id": self.tenant_id,
            "tenant_name": self.tenant_name,
            "tenant_slug": self.tenant_slug,
            "reason": self.reason,
        }


class TenantNotFound(TenantError):
    kind = "tenant_not_found"
    default_message = "Tenant not found"


class TenantGone(TenantError):
    kind = "tenant_gone"
    default_message = "Tenant has been deleted"


class TenantRejected(TenantError):
    kind = "tenant_rejected"
    default_message = "Your organization registration has been rejected"


class TenantInactive(TenantError):
    kind = "tenant_inactive"
    default_message = "Tenant is not active"


class TenantStorageError(TenantError):
    kind = "tenant_storage_error"
    default_message = "Failed to connect to tenant database"


class TenantReadOnly(TenantError):
    """Raised on writes while the tenant is still pending approval"""

    kind = "tenant_read_only"
    default_message = "Tenant is pending approval and is read-only"
