from datetime import date, datetime, timezone

from sqlalchemy import DateTime, Integer
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SerializableMixin:
    """Column-based dict conversion used by reference expansion and responses."""

    def to_dict(self) -> dict:
        data = {}
        for column in self.__table__.columns:
            value = getattr(self, column.key)
            if isinstance(value, (date, datetime)):
                value = value.isoformat()
            data[column.key] = value
        return data


class RegistryBase(DeclarativeBase, SerializableMixin):
    """Declarative base for the system-wide registry (tenants, principals)."""

    pass


class TenantBase(DeclarativeBase, SerializableMixin):
    """Declarative base for tables living inside a tenant partition."""

    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class TenantScopedMixin:
    """
    Every tenant-scoped row carries its owner's id, in both backing strategies.

    The value is stamped by the model facade; callers never set it.
    """

    tenant_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
