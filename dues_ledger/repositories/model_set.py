"""
Uniform tenant-scoped model access.

`get_models(context)` is the single entry point business code uses to reach
tenant data. It returns the same set of accessors whichever backing strategy
is configured; the accessors are bound to the context and never accept a
tenant id from the caller.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from dues_ledger.core.exceptions import (
    ConflictError,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from dues_ledger.models.activity_log import ActivityLog
from dues_ledger.models.contribution import DUES_TYPE_NAME, Contribution, ContributionType
from dues_ledger.models.expenditure import Expenditure
from dues_ledger.models.member import Member, calculate_arrears
from dues_ledger.models.receipt import Receipt
from dues_ledger.models.reminder import Reminder
from dues_ledger.models.subgroup import Subgroup
from dues_ledger.models.tenant_context import TenantContext
from dues_ledger.repositories.member_repository import (
    MemberRepository,
    apply_dues_payment,
    unique_receipt_code,
)
from dues_ledger.repositories.scoped_repository import ScopedRepository, today_factory

logger = logging.getLogger(__name__)

MEMBER_SUMMARY = ("id", "name", "member_code", "email")


class SubgroupRepository(ScopedRepository[Subgroup]):
    model = Subgroup
    references = {"leader_id": (Member, MEMBER_SUMMARY)}

    async def _before_delete(self, session, record: Subgroup) -> None:
        # Members of a removed group become unassigned
        await session.execute(
            update(Member)
            .where(Member.tenant_id == self.tenant_id, Member.subgroup_id == record.id)
            .values(subgroup_id=None)
        )


class ContributionTypeRepository(ScopedRepository[ContributionType]):
    """Contribution types; the seeded Dues type is read-only."""

    model = ContributionType

    async def dues_type(self) -> ContributionType | None:
        return await self.find_one(name=DUES_TYPE_NAME, is_system=True)

    async def create(self, data: dict) -> ContributionType:
        data = dict(data)
        data["is_system"] = False
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationException("Name is required")
        data["name"] = name
        return await super().create(data)

    async def update(self, record_id: int, data: dict) -> ContributionType | None:
        existing = await self.find_by_id(record_id)
        if existing is None:
            return None
        if existing.is_dues:
            raise ValidationException("The Dues type cannot be modified")
        data = {k: v for k, v in data.items() if k != "is_system"}
        if "name" in data and not (data["name"] or "").strip():
            raise ValidationException("Name cannot be empty")
        return await super().update(record_id, data)

    async def delete(self, record_id: int) -> bool:
        existing = await self.find_by_id(record_id)
        if existing is None:
            return False
        if existing.is_dues:
            raise ValidationException("The Dues type cannot be deleted")
        used = await self._count_in_tenant(Contribution, contribution_type_id=record_id)
        if used:
            raise ValidationException(
                f"Cannot delete: {used} contribution(s) use this type"
            )
        return await super().delete(record_id)

    async def _count_in_tenant(self, model, **filters) -> int:
        conditions = [getattr(model, key) == value for key, value in filters.items()]
        stmt = select(func.count(model.id)).where(model.tenant_id == self.tenant_id, *conditions)
        async with self.handle.session(self.tenant_id) as session:
            return (await session.scalar(stmt)) or 0


@dataclass
class ContributionResult:
    contribution: Contribution
    receipt: Receipt
    member: Member | None = None


class ContributionRepository(ScopedRepository[Contribution]):
    """Contributions; recording one always issues its receipt atomically."""

    model = Contribution
    references = {
        "member_id": (Member, MEMBER_SUMMARY),
        "contribution_type_id": (ContributionType, ("id", "name", "is_system")),
    }

    def __init__(self, context: TenantContext, today: Callable[[], date] | None = None):
        super().__init__(context)
        self.today = today_factory(today)

    async def record_with_receipt(
        self,
        contribution_type_id: int,
        amount: float,
        recorded_by: str,
        member_id: int | None = None,
        contributed_on: date | None = None,
        remarks: str = "",
    ) -> ContributionResult:
        """
        Record a contribution and its receipt in one storage transaction.

        A Dues contribution made by a member also counts as a dues payment:
        the member's totals and payment history are updated and the receipt is
        a dues receipt pointing at the payment. Every other contribution gets
        a contribution receipt.

        Raises:
            TenantReadOnly: If the tenant is pending approval
            ValidationException: If amount is not positive
            NotFoundException: If the type or member does not exist in this tenant
        """
        self._ensure_writable()
        if amount is None or amount <= 0:
            raise ValidationException("Contribution amount must be positive")

        today = self.today()
        contributed_on = contributed_on or today

        async with self.handle.session(self.tenant_id) as session:
            ctype = await session.scalar(
                select(ContributionType).where(
                    ContributionType.tenant_id == self.tenant_id,
                    ContributionType.id == contribution_type_id,
                )
            )
            if ctype is None:
                raise NotFoundException("Contribution type not found")

            member = None
            if member_id is not None:
                member = await session.scalar(
                    select(Member).where(Member.tenant_id == self.tenant_id, Member.id == member_id)
                )
                if member is None:
                    raise NotFoundException("Member not found")

            contribution = Contribution(
                tenant_id=self.tenant_id,
                contribution_type_id=ctype.id,
                amount=amount,
                contributed_on=contributed_on,
                recorded_by=recorded_by,
                member_id=member.id if member else None,
                remarks=remarks or "",
            )
            session.add(contribution)
            await session.flush()

            receipt = Receipt(
                tenant_id=self.tenant_id,
                receipt_code=await unique_receipt_code(session, self.tenant_id, today),
                amount=amount,
                payment_date=contributed_on,
                recorded_by=recorded_by,
                remarks=remarks or "",
                member_id=member.id if member else None,
                member_name=member.name if member else "",
                contribution_type_name=ctype.name,
            )
            if ctype.is_dues and member is not None:
                payment = await apply_dues_payment(
                    session, member, amount, contributed_on, recorded_by
                )
                receipt.receipt_type = "dues"
                receipt.payment_id = payment.id
                receipt.dues_per_month = member.dues_per_month
                receipt.months_covered = payment.months_covered
            else:
                receipt.receipt_type = "contribution"
                receipt.contribution_id = contribution.id

            contribution.receipt_code = receipt.receipt_code
            session.add(receipt)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ConflictError("Could not assign a unique receipt code") from e

            await session.refresh(contribution)
            await session.refresh(receipt)
            if member is not None:
                await session.refresh(member)
                member.arrears = calculate_arrears(member.join_date, member.months_covered, today)

        logger.info(
            f"Recorded {ctype.name} contribution of {amount} (receipt {receipt.receipt_code})"
        )
        return ContributionResult(contribution=contribution, receipt=receipt, member=member)


class ExpenditureRepository(ScopedRepository[Expenditure]):
    model = Expenditure

    async def _before_create(self, session, data: dict) -> dict:
        if data.get("expense_code"):
            return data
        counter = await session.scalar(
            select(func.count(Expenditure.id)).where(Expenditure.tenant_id == self.tenant_id)
        )
        data["expense_code"] = f"EXP-{(counter or 0) + 1:05d}"
        return data


class ReceiptRepository(ScopedRepository[Receipt]):
    model = Receipt
    references = {"member_id": (Member, MEMBER_SUMMARY)}


class ReminderRepository(ScopedRepository[Reminder]):
    model = Reminder
    references = {"member_id": (Member, MEMBER_SUMMARY)}


class ActivityLogRepository(ScopedRepository[ActivityLog]):
    model = ActivityLog

    async def log(self, actor: str, role: str, action: str, affected_member: int | None = None):
        return await self.create(
            {"actor": actor, "role": role, "action": action, "affected_member": affected_member}
        )


@dataclass
class ModelSet:
    """Tenant-scoped accessors for every tenant model."""

    members: MemberRepository
    subgroups: SubgroupRepository
    contributions: ContributionRepository
    contribution_types: ContributionTypeRepository
    expenditures: ExpenditureRepository
    receipts: ReceiptRepository
    reminders: ReminderRepository
    activity_logs: ActivityLogRepository


def get_models(
    context: TenantContext | None,
    today: Callable[[], date] | date | None = None,
) -> ModelSet:
    """
    Build the model set bound to a resolved tenant context.

    Args:
        context: Context from the tenant context resolver
        today: Optional clock used for derived values such as arrears

    Raises:
        ForbiddenException: If there is no tenant context (system principals)
    """
    if context is None:
        raise ForbiddenException("Tenant context required")

    clock = today_factory(today)
    return ModelSet(
        members=MemberRepository(context, today=clock),
        subgroups=SubgroupRepository(context),
        contributions=ContributionRepository(context, today=clock),
        contribution_types=ContributionTypeRepository(context),
        expenditures=ExpenditureRepository(context),
        receipts=ReceiptRepository(context),
        reminders=ReminderRepository(context),
        activity_logs=ActivityLogRepository(context),
    )
