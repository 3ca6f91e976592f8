from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from dues_ledger.models.base import RegistryBase, TimestampMixin
from dues_ledger.models.role import UserRole


class User(RegistryBase, TimestampMixin):
    """
    Principals known to the registry.

    Only stores the identity asserted by the auth token (username is the
    'sub' claim) - no credentials. Auto-created on first API request.
    SYSTEM users never carry a tenant_id; SUPER/ADMIN users are bound to
    exactly one tenant, assigned lazily to the default tenant when missing.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    email: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, native_enum=False, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=UserRole.ADMIN,
    )
    tenant_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("tenants.id"),
        nullable=True,
        index=True,
    )
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username='{self.username}', role={self.role.value})>"
