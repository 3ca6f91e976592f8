from datetime import date

from sqlalchemy import Date, Enum, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from dues_ledger.models.base import TenantBase, TenantScopedMixin, TimestampMixin
from dues_ledger.models.role import MemberRole


def months_since_join(join_date: date, as_of: date) -> int:
    """
    Months elapsed since joining, counting the join month itself.

    Joined 2024-01-15, as of 2024-06-01 -> Jan..Jun = 6.
    """
    return (as_of.year - join_date.year) * 12 + (as_of.month - join_date.month) + 1


def calculate_arrears(join_date: date, months_covered: int, as_of: date) -> int:
    """Months owed but not covered by payments; never negative."""
    return max(0, months_since_join(join_date, as_of) - (months_covered or 0))


def tenant_initials(tenant_name: str | None) -> str:
    """'Acme Ventures' -> 'AV'; falls back to 'ORG'."""
    if not tenant_name or not isinstance(tenant_name, str):
        return "ORG"
    initials = "".join(word[0].upper() for word in tenant_name.split() if word)
    return initials or "ORG"


def generate_member_code(tenant_name: str | None, counter: int) -> str:
    """Next member code after `counter`: {INITIALS}-{00001}."""
    return f"{tenant_initials(tenant_name)}-{counter + 1:05d}"


class Member(TenantBase, TenantScopedMixin, TimestampMixin):
    """
    Dues-paying member of one tenant.

    `arrears` is not persisted: the model facade derives it on every read
    from join_date and months_covered.
    """

    __tablename__ = "members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    member_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    subgroup_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    contact: Mapped[str | None] = mapped_column(String(100), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[MemberRole] = mapped_column(
        Enum(MemberRole, native_enum=False, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=MemberRole.MEMBER,
    )
    join_date: Mapped[date] = mapped_column(Date, nullable=False, default=date.today)
    dues_per_month: Mapped[float] = mapped_column(
        Numeric(precision=15, scale=2, asdecimal=False), nullable=False
    )
    total_paid: Mapped[float] = mapped_column(
        Numeric(precision=15, scale=2, asdecimal=False), nullable=False, default=0.0
    )
    months_covered: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_payment_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Derived on read by the facade
    arrears = 0

    __table_args__ = (
        UniqueConstraint("tenant_id", "member_code", name="uq_members_tenant_code"),
    )

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["arrears"] = self.arrears
        return data


class PaymentHistory(TenantBase, TenantScopedMixin, TimestampMixin):
    """Append-only dues payments of a member."""

    __tablename__ = "payment_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    member_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("members.id", ondelete="CASCADE"),
        nullable=False,
    )
    amount: Mapped[float] = mapped_column(
        Numeric(precision=15, scale=2, asdecimal=False), nullable=False
    )
    paid_on: Mapped[date] = mapped_column(Date, nullable=False)
    months_covered: Mapped[int] = mapped_column(Integer, nullable=False)
    recorded_by: Mapped[str] = mapped_column(String(255), nullable=False)

    __table_args__ = (
        Index("ix_payment_history_tenant_member", "tenant_id", "member_id"),
    )
