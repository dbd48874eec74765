"""
档案路由
GET /api/profiles/{name}                          - 玩家档案列表
GET /api/profile/{profile_id}/player/{name}       - 玩家在某档案中的派生指标
"""

from uuid import UUID

from fastapi import APIRouter, Path

from skyblock_service.models.response import ApiResponse
from skyblock_service.routers.player import NAME_PATTERN
from skyblock_service.services.identity_service import get_identity_resolver
from skyblock_service.services.profile_service import (
    get_profile_detail_resolver,
    get_profile_list_resolver,
)

router = APIRouter(prefix="/api", tags=["档案"])

# 玩家名称，或带 / 不带横线的 UUID
NAME_OR_UUID_PATTERN = (
    r"^(?:[a-zA-Z0-9_]{1,16}"
    r"|[a-fA-F0-9]{32}"
    r"|[a-fA-F0-9]{8}-[a-fA-F0-9]{4}-[a-fA-F0-9]{4}-[a-fA-F0-9]{4}-[a-fA-F0-9]{12})$"
)


@router.get("/profiles/{name}", response_model=ApiResponse)
async def list_profiles(
    name: str = Path(..., min_length=1, max_length=36, pattern=NAME_OR_UUID_PATTERN),
):
    """获取玩家档案列表（名称或 UUID）"""
    profiles = await get_profile_list_resolver().resolve(name)
    return ApiResponse.ok(
        data={
            "count": len(profiles),
            "profiles": [p.model_dump(by_alias=True) for p in profiles],
        },
    )


@router.get("/profile/{profile_id}/player/{name}", response_model=ApiResponse)
async def get_member_metrics(
    profile_id: UUID,
    name: str = Path(..., min_length=1, max_length=16, pattern=NAME_PATTERN),
):
    """获取玩家在档案中的等级、令牌预算与资源"""
    identity = await get_identity_resolver().resolve(name)
    metrics = await get_profile_detail_resolver().resolve_member_metrics(
        str(profile_id), identity.id
    )
    return ApiResponse.ok(
        data={
            "player": identity.model_dump(by_alias=True),
            "profileId": str(profile_id),
            "metrics": metrics.model_dump(by_alias=True),
        },
    )
