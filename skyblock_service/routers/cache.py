"""
缓存管理路由
GET  /api/cache/stats     - 缓存统计
POST /api/cache/clear     - 清理缓存
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from skyblock_service.layers.cache import all_caches
from skyblock_service.models.response import ApiResponse

router = APIRouter(prefix="/api/cache", tags=["缓存管理"])


class ClearRequest(BaseModel):
    cache: Optional[str] = None
    key: Optional[str] = None


@router.get("/stats", response_model=ApiResponse)
async def cache_stats():
    """获取各缓存实例的条目统计"""
    return ApiResponse.ok(data={name: c.stats() for name, c in all_caches().items()})


@router.post("/clear", response_model=ApiResponse)
async def clear_cache(body: ClearRequest):
    """清理指定缓存实例（可指定单个键）；不指定实例时清空全部"""
    caches = all_caches()
    if body.cache is None:
        for c in caches.values():
            c.clear()
        return ApiResponse.ok(message="全部缓存已清理")

    target = caches.get(body.cache)
    if target is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"未知缓存: {body.cache}",
        )
    if body.key:
        target.delete(body.key)
        return ApiResponse.ok(message=f"缓存已清理: {body.cache}/{body.key}")
    target.clear()
    return ApiResponse.ok(message=f"缓存已清理: {body.cache}")
