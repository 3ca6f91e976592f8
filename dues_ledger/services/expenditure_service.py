import logging
from datetime import date

from dues_ledger.core.exceptions import NotFoundException, ValidationException
from dues_ledger.models.expenditure import Expenditure
from dues_ledger.models.tenant_context import TenantContext
from dues_ledger.repositories.model_set import get_models
from dues_ledger.schemas.expenditure_schemas import ExpenditureCreate, ExpenditureUpdate

logger = logging.getLogger(__name__)


class ExpenditureService:
    """Service layer for the organization's spending"""

    def __init__(self, context: TenantContext):
        self.context = context
        self.models = get_models(context)

    async def _log(self, action: str) -> None:
        principal = self.context.principal
        await self.models.activity_logs.log(
            actor=principal.username, role=principal.role.value, action=action
        )

    @staticmethod
    def _filters(
        start_date: date | None, end_date: date | None, category: str | None
    ) -> dict:
        if start_date and end_date and start_date > end_date:
            raise ValidationException("start_date must not be after end_date")
        filters = {}
        if start_date is not None:
            filters["spent_on__gte"] = start_date
        if end_date is not None:
            filters["spent_on__lte"] = end_date
        if category:
            filters["category"] = category
        return filters

    async def list_expenditures(
        self,
        start_date: date | None = None,
        end_date: date | None = None,
        category: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Expenditure]:
        """
        List expenditures, most recent first.

        Args:
            start_date: Inclusive lower bound on spent_on
            end_date: Inclusive upper bound on spent_on
            category: Exact category match
        """
        filters = self._filters(start_date, end_date, category)
        return await self.models.expenditures.find(
            order_by=["-spent_on", "-id"], limit=limit, offset=offset, **filters
        )

    async def summary(
        self,
        start_date: date | None = None,
        end_date: date | None = None,
        category: str | None = None,
    ) -> dict:
        filters = self._filters(start_date, end_date, category)
        by_category = await self.models.expenditures.group_totals("category", "amount", **filters)
        return {
            "total": await self.models.expenditures.total("amount", **filters),
            "count": await self.models.expenditures.count(**filters),
            "by_category": {
                (name or "Uncategorized"): amount for name, amount in by_category.items()
            },
        }

    async def get_expenditure(self, expenditure_id: int) -> Expenditure:
        expenditure = await self.models.expenditures.find_by_id(expenditure_id)
        if not expenditure:
            raise NotFoundException("Expenditure not found")
        return expenditure

    async def create_expenditure(self, data: ExpenditureCreate) -> Expenditure:
        """
        Record an expenditure spent by the calling principal.

        Raises:
            TenantReadOnly: If the tenant is pending approval
        """
        payload = data.model_dump(exclude_none=True)
        payload["spent_by"] = self.context.principal.username
        expenditure = await self.models.expenditures.create(payload)
        await self._log(
            f"Recorded expenditure {expenditure.expense_code} of {expenditure.amount} "
            f"for {expenditure.title}"
        )
        return expenditure

    async def update_expenditure(self, expenditure_id: int, data: ExpenditureUpdate) -> Expenditure:
        changes = data.model_dump(exclude_unset=True)
        for required in ("title", "amount", "spent_on"):
            if required in changes and changes[required] is None:
                raise ValidationException(f"{required} cannot be cleared")
        expenditure = await self.models.expenditures.update(expenditure_id, changes)
        if not expenditure:
            raise NotFoundException("Expenditure not found")
        await self._log(f"Updated expenditure {expenditure.expense_code}: {expenditure.title}")
        return expenditure

    async def delete_expenditure(self, expenditure_id: int) -> None:
        expenditure = await self.get_expenditure(expenditure_id)
        await self.models.expenditures.delete(expenditure_id)
        logger.info(f"Deleted expenditure {expenditure.expense_code} of tenant {self.context.tenant_id}")
        await self._log(f"Deleted expenditure {expenditure.expense_code}: {expenditure.title}")
