"""
玩家路由
GET /api/player/name/{name}   - 按名称获取玩家
GET /api/player/uuid/{uuid}   - 按 UUID 获取玩家（可带横线）
"""

from fastapi import APIRouter, Path

from skyblock_service.models.response import ApiResponse
from skyblock_service.services.identity_service import get_identity_resolver

router = APIRouter(prefix="/api/player", tags=["玩家"])

NAME_PATTERN = r"^[a-zA-Z0-9_]+$"
UUID_PATTERN = r"^[a-fA-F0-9\-]+$"


@router.get("/name/{name}", response_model=ApiResponse)
async def get_player_by_name(
    name: str = Path(..., min_length=1, max_length=16, pattern=NAME_PATTERN),
):
    """按名称获取玩家身份"""
    identity = await get_identity_resolver().resolve(name)
    return ApiResponse.ok(data=identity.model_dump(by_alias=True))


@router.get("/uuid/{uuid}", response_model=ApiResponse)
async def get_player_by_uuid(
    uuid: str = Path(..., min_length=32, max_length=36, pattern=UUID_PATTERN),
):
    """按 UUID 获取玩家身份"""
    identity = await get_identity_resolver().resolve_by_id(uuid)
    return ApiResponse.ok(data=identity.model_dump(by_alias=True))
