import random
from datetime import date

from sqlalchemy import CheckConstraint, Date, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from dues_ledger.models.base import TenantBase, TenantScopedMixin, TimestampMixin


def generate_receipt_code(today: date) -> str:
    """RCT{YYYYMMDD}-{NNN}; uniqueness is checked by the caller."""
    return f"RCT{today:%Y%m%d}-{random.randint(0, 999):03d}"


class Receipt(TenantBase, TenantScopedMixin, TimestampMixin):
    """
    Proof of a dues payment or of a generic contribution.

    Exactly one of payment_id / contribution_id is set.
    """

    __tablename__ = "receipts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    receipt_code: Mapped[str] = mapped_column(String(50), nullable=False)
    receipt_type: Mapped[str] = mapped_column(String(20), nullable=False, default="dues")
    member_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    member_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    amount: Mapped[float] = mapped_column(
        Numeric(precision=15, scale=2, asdecimal=False), nullable=False
    )
    dues_per_month: Mapped[float | None] = mapped_column(
        Numeric(precision=15, scale=2, asdecimal=False), nullable=True
    )
    months_covered: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    recorded_by: Mapped[str] = mapped_column(String(255), nullable=False)
    remarks: Mapped[str] = mapped_column(Text, nullable=False, default="")
    payment_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    contribution_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    contribution_type_name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "receipt_code", name="uq_receipts_tenant_code"),
        CheckConstraint(
            "(payment_id IS NULL) != (contribution_id IS NULL)",
            name="ck_receipts_single_source",
        ),
    )
