"""
玩家身份解析服务
优先查询本地条目存储；未命中时经失败缓存 / 成功缓存后再调用身份查询上游，
成功结果写入条目存储与缓存。
"""

import logging
import re
from typing import Optional

from skyblock_service.config import settings
from skyblock_service.db.entry_store import EntryStore, get_entry_store
from skyblock_service.errors import NotFoundError, ValidationError
from skyblock_service.layers.acquisition import IdentityUpstream, get_identity_upstream
from skyblock_service.layers.cache import TTLCache, _make_key, get_identity_cache
from skyblock_service.layers.processing import ProcessingLayer, get_processing_layer
from skyblock_service.models.entities import Identity
from skyblock_service.services.base import CachedResolver

logger = logging.getLogger(__name__)

_NAME_CACHE_NS = "identity"
_ID_CACHE_NS = "identity-id"
_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")


def normalize_identity_id(raw: str) -> str:
    """带横线或不带横线的 UUID → 32 位小写十六进制"""
    candidate = raw.replace("-", "").lower()
    if not _ID_PATTERN.match(candidate):
        raise ValidationError([f"非法的 UUID: {raw}"])
    return candidate


def looks_like_identity_id(value: str) -> bool:
    return bool(_ID_PATTERN.match(value.replace("-", "").lower())) and len(value) in (32, 36)


class IdentityResolver(CachedResolver):
    """玩家身份解析"""

    memoized_errors = (NotFoundError,)

    def __init__(
        self,
        store: EntryStore,
        upstream: IdentityUpstream,
        cache: TTLCache,
        processing: Optional[ProcessingLayer] = None,
        success_ttl: Optional[float] = None,
        failure_ttl: Optional[float] = None,
    ):
        super().__init__(
            cache,
            success_ttl=success_ttl if success_ttl is not None else settings.IDENTITY_SUCCESS_TTL,
            failure_ttl=failure_ttl if failure_ttl is not None else settings.IDENTITY_FAILURE_TTL,
        )
        self._store = store
        self._upstream = upstream
        self._proc = processing or get_processing_layer()

    async def resolve(self, name: str) -> Identity:
        """
        按名称解析玩家身份

        Raises:
            NotFoundError: 上游不存在该名称（会被负缓存）
            ValidationError: 上游响应结构不符（不缓存）
            StoreError: 条目存储读写失败
        """
        stored = await self._store.find_by_name(name)
        if stored is not None:
            return stored

        logger.info(f"玩家 {name} 不在条目存储中，转查上游")
        key = _make_key(_NAME_CACHE_NS, name.lower())
        return await self._resolve_cached(key, lambda: self._fetch_by_name(name))

    async def resolve_by_id(self, identity_id: str) -> Identity:
        """按 UUID 解析玩家身份，UUID 可带横线"""
        identity_id = normalize_identity_id(identity_id)
        stored = await self._store.find_by_id(identity_id)
        if stored is not None:
            return stored

        logger.info(f"UUID {identity_id} 不在条目存储中，转查上游")
        key = _make_key(_ID_CACHE_NS, identity_id)
        return await self._resolve_cached(key, lambda: self._fetch_by_id(identity_id))

    async def _fetch_by_name(self, name: str) -> Identity:
        resp = await self._upstream.lookup_name(name)
        if not resp.ok:
            logger.error(f"名称 {name} 在身份查询上游不存在（HTTP {resp.status}）")
            raise NotFoundError(name, f"玩家 {name} 不存在")
        return await self._persist(self._proc.to_identity(resp.payload))

    async def _fetch_by_id(self, identity_id: str) -> Identity:
        resp = await self._upstream.lookup_id(identity_id)
        if not resp.ok:
            logger.error(f"UUID {identity_id} 在身份查询上游不存在（HTTP {resp.status}）")
            raise NotFoundError(identity_id, f"玩家 {identity_id} 不存在")
        return await self._persist(self._proc.to_identity(resp.payload))

    async def _persist(self, identity: Identity) -> Identity:
        await self._store.insert(identity)
        logger.info(f"玩家 {identity.name} 已解析: {identity.id}")
        return identity


# ── 模块级别单例 ──────────────────────────────────────────
_identity_resolver: Optional[IdentityResolver] = None


def get_identity_resolver() -> IdentityResolver:
    global _identity_resolver
    if _identity_resolver is None:
        _identity_resolver = IdentityResolver(
            store=get_entry_store(),
            upstream=get_identity_upstream(),
            cache=get_identity_cache(),
        )
    return _identity_resolver
