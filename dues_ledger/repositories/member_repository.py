import logging
import math
from dataclasses import dataclass
from datetime import date
from typing import Callable

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from dues_ledger.core.exceptions import ConflictError, NotFoundException, ValidationException
from dues_ledger.models.member import Member, PaymentHistory, calculate_arrears, generate_member_code
from dues_ledger.models.receipt import Receipt, generate_receipt_code
from dues_ledger.models.subgroup import Subgroup
from dues_ledger.models.tenant_context import TenantContext
from dues_ledger.repositories.scoped_repository import ScopedRepository, today_factory

logger = logging.getLogger(__name__)

RECEIPT_CODE_ATTEMPTS = 10
MEMBER_CODE_ATTEMPTS = 3


@dataclass
class PaymentResult:
    """Everything written by one dues payment."""

    member: Member
    payment: PaymentHistory
    receipt: Receipt


async def unique_receipt_code(session: AsyncSession, tenant_id: int, today: date) -> str:
    """Draw receipt codes until one is unused in this tenant (bounded retries)."""
    code = generate_receipt_code(today)
    for _ in range(RECEIPT_CODE_ATTEMPTS):
        taken = await session.scalar(
            select(Receipt.id).where(Receipt.tenant_id == tenant_id, Receipt.receipt_code == code)
        )
        if taken is None:
            return code
        code = generate_receipt_code(today)
    # Last draw goes unchecked; the unique constraint still guards it
    return code


def months_paid_for(amount: float, dues_per_month: float | None) -> int:
    """Whole months an amount covers; 0 when the member has no dues rate."""
    if not dues_per_month or dues_per_month <= 0:
        return 0
    return math.floor(amount / dues_per_month)


async def apply_dues_payment(
    session: AsyncSession,
    member: Member,
    amount: float,
    paid_on: date,
    recorded_by: str,
) -> PaymentHistory:
    """
    Add a payment to a member's totals and history inside the caller's transaction.

    Flushes so the returned PaymentHistory has its id; does not commit.
    """
    months = months_paid_for(amount, member.dues_per_month)
    member.total_paid = (member.total_paid or 0) + amount
    member.months_covered = (member.months_covered or 0) + months
    member.last_payment_date = paid_on

    payment = PaymentHistory(
        tenant_id=member.tenant_id,
        member_id=member.id,
        amount=amount,
        paid_on=paid_on,
        months_covered=months,
        recorded_by=recorded_by,
    )
    session.add(payment)
    await session.flush()
    return payment


class MemberRepository(ScopedRepository[Member]):
    """
    Members of one tenant.

    `arrears` is derived on every read from join_date and months_covered
    against the injected clock; it is never written.
    """

    model = Member
    references = {
        "subgroup_id": (Subgroup, ("id", "name")),
    }

    def __init__(self, context: TenantContext, today: Callable[[], date] | None = None):
        super().__init__(context)
        self.today = today_factory(today)

    def _prepare(self, record: Member) -> Member:
        record.arrears = calculate_arrears(record.join_date, record.months_covered, self.today())
        return record

    async def _before_create(self, session: AsyncSession, data: dict) -> dict:
        if data.get("member_code"):
            return data
        counter = await session.scalar(
            select(func.count(Member.id)).where(Member.tenant_id == self.tenant_id)
        )
        counter = counter or 0
        while True:
            code = generate_member_code(self.context.tenant.name, counter)
            taken = await session.scalar(
                select(Member.id).where(Member.tenant_id == self.tenant_id, Member.member_code == code)
            )
            if taken is None:
                break
            counter += 1
        data["member_code"] = code
        return data

    async def create(self, data: dict) -> Member:
        """
        Create a member, generating `{INITIALS}-{NNNNN}` when no code is given.

        A generated code that loses a race is regenerated; a caller-supplied
        duplicate is a ConflictError.
        """
        if data.get("member_code"):
            return await super().create(data)

        for attempt in range(MEMBER_CODE_ATTEMPTS):
            try:
                return await super().create(dict(data))
            except ConflictError:
                if attempt == MEMBER_CODE_ATTEMPTS - 1:
                    raise
                logger.debug(f"Generated member code collided for tenant {self.tenant_id}, retrying")

    async def find_in_arrears(self, min_months: int = 1) -> list[Member]:
        """Members owing at least `min_months`, most in arrears first."""
        members = await self.find(order_by="name")
        owing = [m for m in members if m.arrears >= min_months]
        return sorted(owing, key=lambda m: m.arrears, reverse=True)

    async def payment_history(self, member_id: int) -> list[PaymentHistory]:
        """
        Payments of a member, newest first.

        Raises:
            NotFoundException: If the member does not exist in this tenant
        """
        async with self.handle.session(self.tenant_id) as session:
            if await self._get(session, member_id) is None:
                raise NotFoundException("Member not found")
            stmt = (
                select(PaymentHistory)
                .where(
                    PaymentHistory.tenant_id == self.tenant_id,
                    PaymentHistory.member_id == member_id,
                )
                .order_by(PaymentHistory.paid_on.desc(), PaymentHistory.id.desc())
            )
            return list((await session.scalars(stmt)).all())

    async def record_payment(
        self,
        member_id: int,
        amount: float,
        recorded_by: str,
        paid_on: date | None = None,
        remarks: str = "",
    ) -> PaymentResult:
        """
        Record a dues payment in one storage transaction.

        Updates the member's totals, appends the payment to its history and
        issues the dues receipt. Either all three are written or none is.

        Args:
            member_id: Paying member
            amount: Amount paid, must be positive
            recorded_by: Username of the recording admin
            paid_on: Payment date (defaults to today)
            remarks: Free text copied to the receipt

        Returns:
            PaymentResult with the updated member, the payment and the receipt

        Raises:
            TenantReadOnly: If the tenant is pending approval
            ValidationException: If amount is not positive
            NotFoundException: If the member does not exist in this tenant
            ConflictError: If no unique receipt code could be assigned
        """
        self._ensure_writable()
        if amount is None or amount <= 0:
            raise ValidationException("Payment amount must be positive")

        today = self.today()
        paid_on = paid_on or today

        async with self.handle.session(self.tenant_id) as session:
            member = await self._get(session, member_id)
            if member is None:
                raise NotFoundException("Member not found")

            payment = await apply_dues_payment(session, member, amount, paid_on, recorded_by)
            months = payment.months_covered

            receipt = Receipt(
                tenant_id=self.tenant_id,
                receipt_code=await unique_receipt_code(session, self.tenant_id, today),
                receipt_type="dues",
                member_id=member.id,
                member_name=member.name,
                amount=amount,
                dues_per_month=member.dues_per_month,
                months_covered=months,
                payment_date=paid_on,
                recorded_by=recorded_by,
                remarks=remarks or "",
                payment_id=payment.id,
            )
            session.add(receipt)

            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ConflictError("Could not assign a unique receipt code") from e

            for record in (member, payment, receipt):
                await session.refresh(record)

        logger.info(
            f"Recorded payment of {amount} for member {member.id} "
            f"({months} months, receipt {receipt.receipt_code})"
        )
        return PaymentResult(member=self._prepare(member), payment=payment, receipt=receipt)

    async def _before_delete(self, session: AsyncSession, record: Member) -> None:
        # Foreign keys are not enforced on every backend; drop the history explicitly
        history = await session.scalars(
            select(PaymentHistory).where(
                PaymentHistory.tenant_id == self.tenant_id,
                PaymentHistory.member_id == record.id,
            )
        )
        for payment in history.all():
            await session.delete(payment)
