"""Tenant model for multi-tenant isolation."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Enum, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from dues_ledger.models.base import RegistryBase, TimestampMixin
from dues_ledger.models.role import TenantStatus


def default_tenant_config(name: str, branding: dict | None = None) -> dict:
    """Config document every new tenant starts with."""
    branding = branding or {}
    return {
        "branding": {
            "name": branding.get("name") or name,
            "logo": branding.get("logo") or "",
            "primary_color": branding.get("primary_color") or "#3B82F6",
            "secondary_color": branding.get("secondary_color") or "#1E40AF",
        },
        "settings": {
            "email_notifications": True,
            "auto_receipts": True,
            "reminder_enabled": True,
        },
        "features": {
            "subgroups": True,
            "expenditure": True,
            "reports": True,
        },
    }


class Tenant(RegistryBase, TimestampMixin):
    """
    One client organization and its data partition.

    Lives in the registry database, never inside a tenant partition.
    `slug` and `storage_id` are globally unique and immutable once assigned.
    Tenants are never hard-deleted in normal flow: `deleted_at` marks a
    soft delete and the status moves to ARCHIVED.
    """

    __tablename__ = "tenants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    storage_id: Mapped[str] = mapped_column(
        String(100), unique=True, nullable=False, index=True
    )
    status: Mapped[TenantStatus] = mapped_column(
        Enum(TenantStatus, native_enum=False, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=TenantStatus.PENDING,
        index=True,
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Id of the system principal that approved or rejected the tenant
    approved_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    config: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    contact: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, slug='{self.slug}', status={self.status.value})>"
