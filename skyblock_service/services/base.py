"""
解析器基类
统一的读穿流程：失败缓存 → 成功缓存 → 在途请求 → 上游加载 → 写缓存。
同一键的并发未命中只会触发一次上游加载。
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type

from skyblock_service.layers.cache import TTLCache

logger = logging.getLogger(__name__)

Loader = Callable[[], Awaitable[Any]]


class CachedResolver:
    """带负缓存与请求合并的解析器"""

    # 会被写入失败缓存的错误类型，其余错误原样抛出且不缓存
    memoized_errors: Tuple[Type[BaseException], ...] = ()

    def __init__(
        self,
        cache: TTLCache,
        success_ttl: Optional[float] = None,
        failure_ttl: Optional[float] = None,
    ):
        self._cache = cache
        self._success_ttl = success_ttl
        self._failure_ttl = failure_ttl
        self._inflight: Dict[str, asyncio.Task] = {}

    @property
    def cache(self) -> TTLCache:
        return self._cache

    async def _resolve_cached(self, key: str, loader: Loader) -> Any:
        error = self._cache.get_failure(key)
        if error is not None:
            logger.error(f"此前解析失败，直接抛出缓存的错误: {key}: {error}")
            # 同一实例反复抛出时先清空 traceback，避免帧链随请求增长
            raise error.with_traceback(None)

        if self._cache.has(key):
            return self._cache.get(key)

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._load(key, loader))
            self._inflight[key] = task
        else:
            logger.debug(f"合并在途请求: {key}")
        return await asyncio.shield(task)

    async def _load(self, key: str, loader: Loader) -> Any:
        try:
            value = await loader()
        except self.memoized_errors as exc:
            if self._should_memoize(exc):
                self._cache.remember_failure(key, exc, self._failure_ttl)
            raise
        else:
            self._cache.set(key, value, self._success_ttl)
            return value
        finally:
            self._inflight.pop(key, None)

    def _should_memoize(self, exc: BaseException) -> bool:
        """memoized_errors 中的错误默认全部写入失败缓存"""
        return True

    def inflight_count(self) -> int:
        return len(self._inflight)
