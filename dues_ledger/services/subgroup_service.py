import logging
from datetime import date
from typing import Callable

from dues_ledger.core.exceptions import NotFoundException, ValidationException
from dues_ledger.models.member import Member
from dues_ledger.models.subgroup import Subgroup
from dues_ledger.models.tenant_context import TenantContext
from dues_ledger.repositories.model_set import get_models
from dues_ledger.schemas.subgroup_schemas import SubgroupCreate, SubgroupUpdate

logger = logging.getLogger(__name__)

UNASSIGNED = "Unassigned"


def _stats(group_id: int | None, name: str, leader: dict | None, members: list[Member]) -> dict:
    collected = sum(m.total_paid or 0.0 for m in members)
    count = len(members)
    return {
        "id": group_id,
        "name": name,
        "leader": leader,
        "total_collected": collected,
        "total_members": count,
        "average_per_member": collected / count if count else 0.0,
    }


class SubgroupService:
    """Service layer for subgroups and their collection figures"""

    def __init__(self, context: TenantContext, today: Callable[[], date] | None = None):
        self.context = context
        self.models = get_models(context, today=today)

    async def _log(self, action: str, affected_member: int | None = None) -> None:
        principal = self.context.principal
        await self.models.activity_logs.log(
            actor=principal.username,
            role=principal.role.value,
            action=action,
            affected_member=affected_member,
        )

    async def _leader(self, leader_id: int) -> Member:
        leader = await self.models.members.find_by_id(leader_id)
        if leader is None:
            raise ValidationException("Subgroup leader must be an existing member")
        return leader

    async def _get(self, subgroup_id: int) -> Subgroup:
        subgroup = await self.models.subgroups.find_by_id(subgroup_id)
        if not subgroup:
            raise NotFoundException("Subgroup not found")
        return subgroup

    async def leaderboard(self) -> list[dict]:
        """
        Per-subgroup totals, highest collection first.

        Members without a subgroup are reported as an extra "Unassigned"
        entry with id None.
        """
        by_group: dict[int | None, list[Member]] = {}
        for member in await self.models.members.find():
            by_group.setdefault(member.subgroup_id, []).append(member)

        subgroups = await self.models.subgroups.find(order_by="name")
        groups = [
            _stats(data["id"], data["name"], data["leader"], by_group.get(data["id"], []))
            for data in await self.models.subgroups.expand(subgroups, "leader_id")
        ]
        if None in by_group:
            groups.append(_stats(None, UNASSIGNED, None, by_group[None]))

        groups.sort(key=lambda g: g["total_collected"], reverse=True)
        return groups

    async def list_subgroups(self) -> list[dict]:
        """Subgroups by name with their leader expanded and collection figures"""
        groups = [g for g in await self.leaderboard() if g["id"] is not None]
        return sorted(groups, key=lambda g: g["name"])

    async def get_subgroup(self, subgroup_id: int) -> dict:
        """
        A subgroup with its members and totals.

        Raises:
            NotFoundException: If the subgroup does not exist in this tenant
        """
        subgroup = await self._get(subgroup_id)
        [expanded] = await self.models.subgroups.expand([subgroup], "leader_id")
        members = await self.models.members.find(subgroup_id=subgroup.id, order_by="name")
        return {
            "subgroup": subgroup,
            "leader": expanded["leader"],
            "members": members,
            "stats": _stats(subgroup.id, subgroup.name, expanded["leader"], members),
        }

    async def create_subgroup(self, data: SubgroupCreate) -> Subgroup:
        """
        Create a subgroup; its leader is moved into it.

        Raises:
            ValidationException: If the leader is not a member of this tenant
            TenantReadOnly: If the tenant is pending approval
        """
        leader = await self._leader(data.leader_id)
        subgroup = await self.models.subgroups.create(
            {
                "name": data.name.strip(),
                "leader_id": leader.id,
                "created_by": self.context.principal.username,
            }
        )
        await self.models.members.update(leader.id, {"subgroup_id": subgroup.id})
        await self._log(f"Created subgroup {subgroup.name} led by {leader.name}", leader.id)
        return subgroup

    async def update_subgroup(self, subgroup_id: int, data: SubgroupUpdate) -> Subgroup:
        """Rename a subgroup or hand it to a new leader, who joins it"""
        await self._get(subgroup_id)
        changes = {}
        leader = None
        if data.name is not None:
            changes["name"] = data.name.strip()
        if data.leader_id is not None:
            leader = await self._leader(data.leader_id)
            changes["leader_id"] = leader.id

        subgroup = await self.models.subgroups.update(subgroup_id, changes)
        if not subgroup:
            raise NotFoundException("Subgroup not found")
        if leader is not None:
            await self.models.members.update(leader.id, {"subgroup_id": subgroup.id})
        await self._log(f"Updated subgroup {subgroup.name}", leader.id if leader else None)
        return subgroup

    async def delete_subgroup(self, subgroup_id: int) -> None:
        """Delete a subgroup; its members become unassigned"""
        subgroup = await self._get(subgroup_id)
        await self.models.subgroups.delete(subgroup_id)
        logger.info(f"Deleted subgroup {subgroup.id} of tenant {self.context.tenant_id}")
        await self._log(f"Deleted subgroup {subgroup.name}; members set to {UNASSIGNED}")
