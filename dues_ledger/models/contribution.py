from datetime import date

from sqlalchemy import Boolean, Date, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from dues_ledger.models.base import TenantBase, TenantScopedMixin, TimestampMixin

DUES_TYPE_NAME = "Dues"


class ContributionType(TenantBase, TenantScopedMixin, TimestampMixin):
    """
    Category of money coming in.

    Every tenant is seeded with one system "Dues" type that cannot be
    renamed or deleted.
    """

    __tablename__ = "contribution_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_contribution_types_tenant_name"),
    )

    @property
    def is_dues(self) -> bool:
        return self.is_system and self.name == DUES_TYPE_NAME


class Contribution(TenantBase, TenantScopedMixin, TimestampMixin):
    """Money received against a contribution type, optionally from a member."""

    __tablename__ = "contributions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contribution_type_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    amount: Mapped[float] = mapped_column(
        Numeric(precision=15, scale=2, asdecimal=False), nullable=False
    )
    contributed_on: Mapped[date] = mapped_column(Date, nullable=False, default=date.today)
    recorded_by: Mapped[str] = mapped_column(String(255), nullable=False)
    member_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    remarks: Mapped[str] = mapped_column(Text, nullable=False, default="")
    receipt_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
