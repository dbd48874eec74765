"""
档案数据服务
  ProfileListResolver    玩家 → 档案列表
  ProfileDetailResolver  档案 ID → 档案详情（成员载荷），以及成员派生指标
上游错误状态会被负缓存 10 分钟；结构校验错误与成员缺失从不缓存。
"""

import logging
from typing import Any, List, Optional

from skyblock_service.config import settings
from skyblock_service.errors import (
    NonexistentProfileError,
    PlayerNotInProfileError,
    TransportError,
    ValidationError,
)
from skyblock_service.layers.acquisition import (
    ProfileUpstream,
    UpstreamResponse,
    error_cause,
    get_profile_upstream,
)
from skyblock_service.layers.analysis import compute_member_metrics
from skyblock_service.layers.cache import (
    TTLCache,
    _make_key,
    get_profile_cache,
    get_profiles_cache,
)
from skyblock_service.layers.processing import ProcessingLayer, get_processing_layer
from skyblock_service.models.entities import MemberMetrics, ProfileDetail, ProfileSummary
from skyblock_service.services.base import CachedResolver
from skyblock_service.services.identity_service import (
    IdentityResolver,
    get_identity_resolver,
    looks_like_identity_id,
    normalize_identity_id,
)

logger = logging.getLogger(__name__)

_LIST_CACHE_NS = "profiles"
_DETAIL_CACHE_NS = "profile"


def _transport_error(resp: UpstreamResponse) -> TransportError:
    cause = error_cause(resp)
    logger.error(f"档案上游返回错误: {resp.status}, {cause}")
    return TransportError("档案上游返回错误", status=resp.status, cause=cause)


def _has_upstream_status(exc: BaseException) -> bool:
    """只缓存上游明确返回的错误状态；网络层失败（status 为 None）不缓存"""
    return getattr(exc, "status", None) is not None


def _payload_field(resp: UpstreamResponse, field: str) -> Any:
    if isinstance(resp.payload, dict):
        return resp.payload.get(field)
    raise ValidationError([f"响应体不是 JSON 对象: {resp.payload!r}"])


class ProfileListResolver(CachedResolver):
    """玩家档案列表解析"""

    memoized_errors = (TransportError,)

    def __init__(
        self,
        identities: IdentityResolver,
        upstream: ProfileUpstream,
        cache: TTLCache,
        processing: Optional[ProcessingLayer] = None,
        success_ttl: Optional[float] = None,
        failure_ttl: Optional[float] = None,
    ):
        super().__init__(
            cache,
            success_ttl=success_ttl,
            failure_ttl=failure_ttl if failure_ttl is not None else settings.PROFILES_FAILURE_TTL,
        )
        self._identities = identities
        self._upstream = upstream
        self._proc = processing or get_processing_layer()

    def _should_memoize(self, exc: BaseException) -> bool:
        return _has_upstream_status(exc)

    async def resolve(self, name_or_id: str) -> List[ProfileSummary]:
        """
        获取玩家的档案列表，参数可为玩家名称或 UUID

        Raises:
            TransportError: 档案上游返回错误状态（负缓存 10 分钟）
            ValidationError: 上游响应结构不符，信息为逐条违规原文
            NotFoundError / StoreError: 由身份解析原样抛出
        """
        if looks_like_identity_id(name_or_id):
            query = normalize_identity_id(name_or_id)
        else:
            query = name_or_id.lower()
        logger.info(f"获取 {name_or_id} 的档案列表")
        key = _make_key(_LIST_CACHE_NS, query)
        return await self._resolve_cached(key, lambda: self._fetch(name_or_id))

    async def _fetch(self, name_or_id: str) -> List[ProfileSummary]:
        if looks_like_identity_id(name_or_id):
            identity = await self._identities.resolve_by_id(name_or_id)
        else:
            identity = await self._identities.resolve(name_or_id)

        resp = await self._upstream.fetch_profiles(identity.id)
        if not resp.ok:
            raise _transport_error(resp)
        return self._proc.to_profile_list(_payload_field(resp, "profiles"))


class ProfileDetailResolver(CachedResolver):
    """档案详情解析"""

    memoized_errors = (TransportError,)

    def __init__(
        self,
        upstream: ProfileUpstream,
        cache: TTLCache,
        processing: Optional[ProcessingLayer] = None,
        success_ttl: Optional[float] = None,
        failure_ttl: Optional[float] = None,
    ):
        super().__init__(
            cache,
            success_ttl=success_ttl,
            failure_ttl=failure_ttl if failure_ttl is not None else settings.PROFILE_FAILURE_TTL,
        )
        self._upstream = upstream
        self._proc = processing or get_processing_layer()

    def _should_memoize(self, exc: BaseException) -> bool:
        return _has_upstream_status(exc)

    async def resolve(self, profile_id: str) -> ProfileDetail:
        """
        获取档案详情

        Raises:
            TransportError: 上游返回错误状态（负缓存 10 分钟），稍后可重试
            NonexistentProfileError: 上游 200 但档案不存在，该 ID 永远无法解析
        """
        key = _make_key(_DETAIL_CACHE_NS, profile_id)
        return await self._resolve_cached(key, lambda: self._fetch(profile_id))

    async def _fetch(self, profile_id: str) -> ProfileDetail:
        resp = await self._upstream.fetch_profile(profile_id)
        if not resp.ok:
            raise _transport_error(resp)
        try:
            return self._proc.to_profile_detail(_payload_field(resp, "profile"))
        except ValidationError as exc:
            logger.error(f"档案 {profile_id} 不存在")
            raise NonexistentProfileError(profile_id, exc.violations) from exc

    async def resolve_member(self, profile_id: str, identity_id: str) -> Any:
        """档案中某成员的原始载荷；成员缺失不做缓存"""
        detail = await self.resolve(profile_id)
        member = detail.members.get(identity_id)
        if member is None:
            raise PlayerNotInProfileError(identity_id, profile_id)
        return member

    async def resolve_member_metrics(self, profile_id: str, identity_id: str) -> MemberMetrics:
        member = await self.resolve_member(profile_id, identity_id)
        return compute_member_metrics(member)


# ── 模块级别单例 ──────────────────────────────────────────
_profile_list_resolver: Optional[ProfileListResolver] = None
_profile_detail_resolver: Optional[ProfileDetailResolver] = None


def get_profile_list_resolver() -> ProfileListResolver:
    global _profile_list_resolver
    if _profile_list_resolver is None:
        _profile_list_resolver = ProfileListResolver(
            identities=get_identity_resolver(),
            upstream=get_profile_upstream(),
            cache=get_profiles_cache(),
        )
    return _profile_list_resolver


def get_profile_detail_resolver() -> ProfileDetailResolver:
    global _profile_detail_resolver
    if _profile_detail_resolver is None:
        _profile_detail_resolver = ProfileDetailResolver(
            upstream=get_profile_upstream(),
            cache=get_profile_cache(),
        )
    return _profile_detail_resolver
