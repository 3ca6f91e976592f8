import logging
from datetime import date
from typing import Callable

from dues_ledger.core.exceptions import NotFoundException, ValidationException
from dues_ledger.models.member import Member, PaymentHistory
from dues_ledger.models.tenant_context import TenantContext
from dues_ledger.repositories.member_repository import PaymentResult
from dues_ledger.repositories.model_set import get_models
from dues_ledger.schemas.member_schemas import MemberCreate, MemberUpdate, PaymentCreate

logger = logging.getLogger(__name__)


class MemberService:
    """Service layer for member and dues payment business logic"""

    def __init__(self, context: TenantContext, today: Callable[[], date] | None = None):
        self.context = context
        self.models = get_models(context, today=today)

    async def _log(self, action: str, affected_member: int | None = None) -> None:
        """
        Append to the tenant's activity log.

        Runs after the logged write has committed; a failure here does not
        undo that write.
        """
        principal = self.context.principal
        await self.models.activity_logs.log(
            actor=principal.username,
            role=principal.role.value,
            action=action,
            affected_member=affected_member,
        )

    async def _check_subgroup(self, subgroup_id: int | None) -> None:
        if subgroup_id is not None and await self.models.subgroups.find_by_id(subgroup_id) is None:
            raise ValidationException("Subgroup not found")

    async def list_members(
        self,
        search: str | None = None,
        subgroup_id: int | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[Member], int]:
        """
        List members with optional filters.

        Args:
            search: Case-insensitive match on name, member code or email
            subgroup_id: Optional subgroup filter
            limit: Maximum number of results
            offset: Pagination offset

        Returns:
            Tuple of (members list, total count)
        """
        filters = {}
        if subgroup_id is not None:
            filters["subgroup_id"] = subgroup_id
        any_of = None
        if search:
            any_of = [
                {"name__icontains": search},
                {"member_code__icontains": search},
                {"email__icontains": search},
            ]

        members = await self.models.members.find(
            any_of=any_of, order_by="name", limit=limit, offset=offset, **filters
        )
        total = await self.models.members.count(any_of=any_of, **filters)
        return members, total

    async def get_member(self, member_id: int) -> Member:
        member = await self.models.members.find_by_id(member_id)
        if not member:
            raise NotFoundException("Member not found")
        return member

    async def create_member(self, data: MemberCreate) -> Member:
        await self._check_subgroup(data.subgroup_id)
        payload = data.model_dump(exclude_none=True)
        member = await self.models.members.create(payload)
        await self._log(f"Added member {member.name} ({member.member_code})", member.id)
        return member

    async def update_member(self, member_id: int, data: MemberUpdate) -> Member:
        changes = data.model_dump(exclude_unset=True)
        if "subgroup_id" in changes:
            await self._check_subgroup(changes["subgroup_id"])
        member = await self.models.members.update(member_id, changes)
        if not member:
            raise NotFoundException("Member not found")
        await self._log(f"Updated member {member.name}", member.id)
        return member

    async def delete_member(self, member_id: int) -> None:
        member = await self.get_member(member_id)
        await self.models.members.delete(member_id)
        await self._log(f"Deleted member {member.name} ({member.member_code})", member_id)

    async def list_arrears(self, min_months: int = 1) -> list[Member]:
        return await self.models.members.find_in_arrears(min_months=min_months)

    async def payment_history(self, member_id: int) -> list[PaymentHistory]:
        return await self.models.members.payment_history(member_id)

    async def record_payment(self, member_id: int, data: PaymentCreate) -> PaymentResult:
        """
        Record a dues payment and its receipt, then log the activity.

        Raises:
            TenantReadOnly: If the tenant is pending approval
            NotFoundException: If the member does not exist
        """
        result = await self.models.members.record_payment(
            member_id,
            amount=data.amount,
            recorded_by=self.context.principal.username,
            paid_on=data.paid_on,
            remarks=data.remarks,
        )
        await self._log(
            f"Recorded payment of {data.amount} for {result.member.name} "
            f"({result.payment.months_covered} months)",
            result.member.id,
        )
        return result
