from fastapi import APIRouter, Depends, status

from dues_ledger.dependencies import get_subgroup_service
from dues_ledger.schemas.subgroup_schemas import (
    SubgroupCreate,
    SubgroupDetailResponse,
    SubgroupResponse,
    SubgroupStats,
    SubgroupUpdate,
)
from dues_ledger.services.subgroup_service import SubgroupService

router = APIRouter()


@router.post("/", response_model=SubgroupResponse, status_code=status.HTTP_201_CREATED)
async def create_subgroup(data: SubgroupCreate, service: SubgroupService = Depends(get_subgroup_service)):
    """
    Create a subgroup.

    - The leader must be an existing member and is moved into the subgroup
    - Returns 400 if the leader does not exist in this tenant
    """
    return await service.create_subgroup(data)


@router.get("/", response_model=list[SubgroupStats])
async def list_subgroups(service: SubgroupService = Depends(get_subgroup_service)):
    """Subgroups by name, with leader and collection totals"""
    return await service.list_subgroups()


@router.get("/leaderboard", response_model=list[SubgroupStats])
async def subgroup_leaderboard(service: SubgroupService = Depends(get_subgroup_service)):
    """Subgroups ranked by total collected, including unassigned members"""
    return await service.leaderboard()


@router.get("/{subgroup_id}", response_model=SubgroupDetailResponse)
async def get_subgroup(subgroup_id: int, service: SubgroupService = Depends(get_subgroup_service)):
    return await service.get_subgroup(subgroup_id)


@router.patch("/{subgroup_id}", response_model=SubgroupResponse)
async def update_subgroup(
    subgroup_id: int,
    data: SubgroupUpdate,
    service: SubgroupService = Depends(get_subgroup_service),
):
    """Rename a subgroup or change its leader"""
    return await service.update_subgroup(subgroup_id, data)


@router.delete("/{subgroup_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_subgroup(subgroup_id: int, service: SubgroupService = Depends(get_subgroup_service)):
    """Delete a subgroup; its members become unassigned"""
    await service.delete_subgroup(subgroup_id)
