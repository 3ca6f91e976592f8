from datetime import date

from sqlalchemy import Date, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from dues_ledger.models.base import TenantBase, TenantScopedMixin, TimestampMixin


class Expenditure(TenantBase, TenantScopedMixin, TimestampMixin):
    """Money spent by the organization."""

    __tablename__ = "expenditures"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    expense_code: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[float] = mapped_column(
        Numeric(precision=15, scale=2, asdecimal=False), nullable=False
    )
    category: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    spent_on: Mapped[date] = mapped_column(Date, nullable=False, default=date.today)
    spent_by: Mapped[str] = mapped_column(String(255), nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "expense_code", name="uq_expenditures_tenant_code"),
    )
