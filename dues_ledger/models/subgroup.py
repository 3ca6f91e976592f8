from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from dues_ledger.models.base import TenantBase, TenantScopedMixin, TimestampMixin


class Subgroup(TenantBase, TenantScopedMixin, TimestampMixin):
    """Group of members led by one of them."""

    __tablename__ = "subgroups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    leader_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
