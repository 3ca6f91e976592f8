from dues_ledger.core.exceptions import NotFoundException
from dues_ledger.models.contribution import Contribution, ContributionType
from dues_ledger.models.tenant_context import TenantContext
from dues_ledger.repositories.model_set import ContributionResult, get_models
from dues_ledger.schemas.contribution_schemas import ContributionCreate, ContributionTypeCreate


class ContributionService:
    """Service layer for contribution types and contributions"""

    def __init__(self, context: TenantContext):
        self.context = context
        self.models = get_models(context)

    async def list_types(self) -> list[ContributionType]:
        """System types first, then by name"""
        return await self.models.contribution_types.find(order_by=["-is_system", "name"])

    async def create_type(self, data: ContributionTypeCreate) -> ContributionType:
        return await self.models.contribution_types.create(data.model_dump())

    async def delete_type(self, type_id: int) -> None:
        """
        Delete a contribution type.

        Raises:
            NotFoundException: If the type does not exist
            ValidationException: For the Dues type or a type still in use
        """
        if not await self.models.contribution_types.delete(type_id):
            raise NotFoundException("Contribution type not found")

    async def list_contributions(
        self, contribution_type_id: int | None = None, limit: int = 100, offset: int = 0
    ) -> list[Contribution]:
        filters = {}
        if contribution_type_id is not None:
            filters["contribution_type_id"] = contribution_type_id
        return await self.models.contributions.find(
            order_by=["-contributed_on", "-id"], limit=limit, offset=offset, **filters
        )

    async def record_contribution(self, data: ContributionCreate) -> ContributionResult:
        principal = self.context.principal
        result = await self.models.contributions.record_with_receipt(
            contribution_type_id=data.contribution_type_id,
            amount=data.amount,
            recorded_by=principal.username,
            member_id=data.member_id,
            contributed_on=data.contributed_on,
            remarks=data.remarks,
        )
        await self.models.activity_logs.log(
            actor=principal.username,
            role=principal.role.value,
            action=(
                f"Recorded {result.receipt.contribution_type_name} contribution of {data.amount}"
            ),
            affected_member=data.member_id,
        )
        return result
