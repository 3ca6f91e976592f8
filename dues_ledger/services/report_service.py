from datetime import date
from typing import Callable

from dues_ledger.models.tenant_context import TenantContext
from dues_ledger.repositories.model_set import get_models
from dues_ledger.services.subgroup_service import SubgroupService


class ReportService:
    """Read-only aggregates over one tenant's data"""

    def __init__(self, context: TenantContext, today: Callable[[], date] | None = None):
        self.models = get_models(context, today=today)
        self.subgroups = SubgroupService(context, today=today)

    async def dashboard(self) -> dict:
        """
        Dashboard totals for the current tenant.

        Dues collected come from member totals; contributions, expenditure
        and per-group figures use the facade's aggregation helpers.
        """
        members = await self.models.members.find()
        in_arrears = [m for m in members if m.arrears > 0]

        dues_collected = await self.models.members.total("total_paid")
        expenditure = await self.models.expenditures.total("amount")
        by_category = await self.models.expenditures.group_totals("category", "amount")
        by_type_id = await self.models.contributions.group_totals("contribution_type_id", "amount")

        types = {t.id: t for t in await self.models.contribution_types.find()}
        contributions_by_type = {}
        other_contributions = 0.0
        for type_id, amount in by_type_id.items():
            ctype = types.get(type_id)
            name = ctype.name if ctype else "Unknown"
            contributions_by_type[name] = contributions_by_type.get(name, 0.0) + amount
            # Dues contributions already count in member totals
            if not (ctype and ctype.is_dues):
                other_contributions += amount

        groups = await self.subgroups.leaderboard()

        income = dues_collected + other_contributions
        return {
            "total_members": len(members),
            "members_in_arrears": len(in_arrears),
            "total_arrears_months": sum(m.arrears for m in in_arrears),
            "total_dues_collected": dues_collected,
            "total_contributions": other_contributions,
            "total_expenditure": expenditure,
            "balance": income - expenditure,
            "contributions_by_type": contributions_by_type,
            "expenditure_by_category": {
                (category or "Uncategorized"): amount for category, amount in by_category.items()
            },
            "subgroups": groups,
        }
