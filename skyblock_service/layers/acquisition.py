"""
Layer 1 – 数据获取层
封装两个上游 HTTP 数据源：
  身份查询源（名称 / UUID → {id, name}）
  档案数据源（需要 API-Key，返回档案列表与档案详情）
只返回原始状态码与未校验的载荷，校验交给处理层。
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from skyblock_service.config import settings
from skyblock_service.errors import TransportError

logger = logging.getLogger(__name__)


@dataclass
class UpstreamResponse:
    """上游原始响应"""
    status: int
    payload: Any

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class _Upstream:
    """持有一个长生命周期的 httpx.AsyncClient，每次调用均带显式超时"""

    def __init__(
        self,
        base_url: str,
        timeout: Optional[float] = None,
        connect_timeout: Optional[float] = None,
        headers: Optional[dict] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = httpx.Timeout(
            timeout if timeout is not None else settings.UPSTREAM_TIMEOUT,
            connect=connect_timeout if connect_timeout is not None else settings.UPSTREAM_CONNECT_TIMEOUT,
        )
        self._headers = headers or {}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                headers=self._headers,
                transport=self._transport,
            )
        return self._client

    async def _get(self, path: str, params: Optional[dict] = None) -> UpstreamResponse:
        try:
            resp = await self._get_client().get(path, params=params)
        except httpx.RequestError as exc:
            logger.error(f"上游请求失败: {self._base_url}{path}: {exc!r}")
            raise TransportError("上游请求失败", status=None, cause=repr(exc)) from exc

        try:
            payload = resp.json()
        except ValueError:
            payload = resp.text or None
        logger.debug(f"上游响应 {resp.status_code}: {self._base_url}{path}")
        return UpstreamResponse(status=resp.status_code, payload=payload)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class IdentityUpstream(_Upstream):
    """身份查询源"""

    def __init__(self, base_url: Optional[str] = None, **kwargs):
        super().__init__(base_url or settings.IDENTITY_API_URL, **kwargs)

    async def lookup_name(self, name: str) -> UpstreamResponse:
        logger.info(f"调用身份查询接口（名称）: {name}")
        return await self._get(f"/name/{name}")

    async def lookup_id(self, identity_id: str) -> UpstreamResponse:
        logger.info(f"调用身份查询接口（UUID）: {identity_id}")
        return await self._get(f"/uuid/{identity_id}")


class ProfileUpstream(_Upstream):
    """档案数据源，每次调用都携带 API-Key 头"""

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None, **kwargs):
        key = api_key if api_key is not None else settings.PROFILE_API_KEY
        super().__init__(
            base_url or settings.PROFILE_API_URL,
            headers={"API-Key": key},
            **kwargs,
        )

    async def fetch_profiles(self, identity_id: str) -> UpstreamResponse:
        logger.info(f"调用档案列表接口: {identity_id}")
        return await self._get("/profiles", params={"uuid": identity_id})

    async def fetch_profile(self, profile_id: str) -> UpstreamResponse:
        logger.info(f"调用档案详情接口: {profile_id}")
        return await self._get("/profile", params={"profile": profile_id})


def error_cause(resp: UpstreamResponse) -> str:
    """从非 2xx 响应体中提取 cause 字段"""
    if isinstance(resp.payload, dict):
        return str(resp.payload.get("cause") or "")
    if isinstance(resp.payload, str):
        return resp.payload
    return ""


# ── 模块级别单例 ──────────────────────────────────────────
_identity_upstream: Optional[IdentityUpstream] = None
_profile_upstream: Optional[ProfileUpstream] = None


def get_identity_upstream() -> IdentityUpstream:
    global _identity_upstream
    if _identity_upstream is None:
        _identity_upstream = IdentityUpstream()
    return _identity_upstream


def get_profile_upstream() -> ProfileUpstream:
    global _profile_upstream
    if _profile_upstream is None:
        _profile_upstream = ProfileUpstream()
    return _profile_upstream


async def close_upstreams() -> None:
    global _identity_upstream, _profile_upstream
    if _identity_upstream is not None:
        await _identity_upstream.aclose()
        _identity_upstream = None
    if _profile_upstream is not None:
        await _profile_upstream.aclose()
        _profile_upstream = None
    logger.info("上游 HTTP 客户端已关闭")
