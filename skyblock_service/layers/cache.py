"""
Layer 2 – 缓存层
单进程内存 TTL 缓存。每个实例维护两个独立命名空间：
  成功缓存（value）与失败缓存（error，较短 TTL 的负缓存）。
过期在读取时惰性判断，另有可配置周期的后台清理任务回收内存。
"""

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from skyblock_service.config import HOUR, MINUTE, settings

logger = logging.getLogger(__name__)


def _make_key(namespace: str, *parts: str) -> str:
    """生成规范化缓存键"""
    raw = ":".join([namespace] + list(parts))
    if len(raw) > 200:
        raw = namespace + ":" + hashlib.md5(raw.encode()).hexdigest()
    return raw


@dataclass
class CacheEntry:
    key: str
    value: Any
    expires_at: float


@dataclass
class FailureEntry:
    key: str
    error: BaseException
    expires_at: float


class TTLCache:
    """带失败命名空间的 TTL 缓存"""

    def __init__(
        self,
        identifier: str,
        ttl: float = HOUR,
        check_period: float = 0.5 * HOUR,
        failure_ttl: float = 5 * MINUTE,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.identifier = identifier
        self.ttl = ttl
        self.check_period = check_period
        self.failure_ttl = failure_ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._failures: Dict[str, FailureEntry] = {}
        self._sweeper: Optional[asyncio.Task] = None
        self._logger = logging.getLogger(f"{__name__}.{identifier}")

    # ── 成功命名空间 ──────────────────────────────────────

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        if ttl is None:
            ttl = self.ttl
        self._entries[key] = CacheEntry(key, value, self._clock() + ttl)
        self._logger.info(f"缓存写入: {key}（ttl={ttl}s）")

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        self._logger.debug(f"缓存命中: {key}")
        return entry.value

    def has(self, key: str) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return False
        return True

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)
        self._failures.pop(key, None)
        self._logger.info(f"缓存删除: {key}")

    def clear(self) -> None:
        self._entries.clear()
        self._failures.clear()
        self._logger.info("缓存已全部清空")

    def keys(self) -> List[str]:
        """当前仍有效的成功缓存键"""
        return [key for key in list(self._entries) if self.has(key)]

    # ── 失败命名空间 ──────────────────────────────────────

    def remember_failure(
        self, key: str, error: BaseException, ttl: Optional[float] = None
    ) -> None:
        if ttl is None:
            ttl = self.failure_ttl
        self._failures[key] = FailureEntry(key, error, self._clock() + ttl)
        self._logger.warning(f"失败已缓存: {key}（ttl={ttl}s）: {error}")

    def get_failure(self, key: str) -> Optional[BaseException]:
        entry = self._failures.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._failures[key]
            return None
        return entry.error

    def has_failure(self, key: str) -> bool:
        return self.get_failure(key) is not None

    # ── 过期清理 ──────────────────────────────────────────

    def sweep(self) -> int:
        """删除两个命名空间中所有已过期条目，返回删除数量"""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for key in expired:
            del self._entries[key]
        failed = [k for k, e in self._failures.items() if e.expires_at <= now]
        for key in failed:
            del self._failures[key]
        removed = len(expired) + len(failed)
        if removed:
            self._logger.debug(f"清理过期条目 {removed} 个")
        return removed

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.check_period)
            self.sweep()

    def start_sweeper(self) -> None:
        if self.check_period <= 0 or self._sweeper is not None:
            return
        self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    def stats(self) -> dict:
        return {
            "identifier": self.identifier,
            "entries": len(self._entries),
            "failures": len(self._failures),
            "ttl": self.ttl,
            "failure_ttl": self.failure_ttl,
            "check_period": self.check_period,
        }


# ── 模块级别单例 ──────────────────────────────────────────
_identity_cache: Optional[TTLCache] = None
_profiles_cache: Optional[TTLCache] = None
_profile_cache: Optional[TTLCache] = None


def get_identity_cache() -> TTLCache:
    """玩家身份缓存：保留一天，每天清理"""
    global _identity_cache
    if _identity_cache is None:
        _identity_cache = TTLCache(
            "identity",
            ttl=settings.IDENTITY_CACHE_TTL,
            check_period=settings.IDENTITY_CACHE_CHECK_PERIOD,
            failure_ttl=settings.FAILURE_CACHE_TTL,
        )
    return _identity_cache


def get_profiles_cache() -> TTLCache:
    """档案列表缓存：保留一天，每 8 小时清理"""
    global _profiles_cache
    if _profiles_cache is None:
        _profiles_cache = TTLCache(
            "profiles",
            ttl=settings.PROFILES_CACHE_TTL,
            check_period=settings.PROFILES_CACHE_CHECK_PERIOD,
            failure_ttl=settings.FAILURE_CACHE_TTL,
        )
    return _profiles_cache


def get_profile_cache() -> TTLCache:
    """档案详情缓存：保留 2 小时，每 30 分钟清理"""
    global _profile_cache
    if _profile_cache is None:
        _profile_cache = TTLCache(
            "profile",
            ttl=settings.PROFILE_CACHE_TTL,
            check_period=settings.PROFILE_CACHE_CHECK_PERIOD,
            failure_ttl=settings.FAILURE_CACHE_TTL,
        )
    return _profile_cache


def all_caches() -> Dict[str, TTLCache]:
    caches = [get_identity_cache(), get_profiles_cache(), get_profile_cache()]
    return {cache.identifier: cache for cache in caches}
