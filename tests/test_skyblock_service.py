"""
数据解析服务单元测试

覆盖范围：
  - 配置模块（服务发现、环境变量解析）
  - 缓存层（TTL 过期、失败命名空间、周期清理）
  - 处理层（上游响应结构校验）
  - 分析层（等级 / 令牌预算 / 资源三元组）
  - API 响应模型
  - FastAPI 路由（通过 TestClient 测试，解析器均被 mock）
"""

import asyncio
import os
import sys
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

# 确保项目根目录在 sys.path
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

PLAYER_ID = "b876ec32e396476ba1158438d83c67d4"
PROFILE_ID = "4a3b2c1d-1111-4222-8333-944455556666"


class FakeClock:
    """可手动推进的时钟"""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _member_payload(experience=0, nodes=None, **counters) -> dict:
    core = {"experience": experience, "nodes": nodes or {}}
    core.update(counters)
    return {"player_id": PLAYER_ID, "mining_core": core}


# ─────────────────────────────────────────────────────────
# 1. 配置模块测试
# ─────────────────────────────────────────────────────────

class TestConfig:
    def test_defaults(self):
        """默认配置不依赖外部服务即可实例化"""
        from skyblock_service.config import DAY, HOUR, MINUTE, ServiceSettings
        s = ServiceSettings()
        assert s.PORT == 8002
        assert s.ENTRY_STORE_BACKEND == "local"
        assert s.IDENTITY_FAILURE_TTL == HOUR
        assert s.PROFILES_FAILURE_TTL == 10 * MINUTE
        assert s.PROFILE_CACHE_TTL == 2 * HOUR
        assert s.PROFILES_CACHE_TTL == DAY

    def test_mongo_uri_no_auth(self):
        from skyblock_service.config import ServiceSettings
        s = ServiceSettings(MONGODB_USERNAME="", MONGODB_PASSWORD="")
        assert s.MONGO_URI.startswith("mongodb://")
        assert "@" not in s.MONGO_URI

    def test_mongo_uri_with_auth(self):
        from skyblock_service.config import ServiceSettings
        s = ServiceSettings(
            MONGODB_USERNAME="user",
            MONGODB_PASSWORD="pass",
            MONGODB_HOST="db-host",
            MONGODB_PORT=27017,
            MONGODB_DATABASE="mydb",
        )
        assert "user:pass@db-host:27017/mydb" in s.MONGO_URI

    def test_env_override(self):
        from skyblock_service.config import ServiceSettings
        with patch.dict(os.environ, {"PROFILE_API_KEY": "k-123", "UPSTREAM_TIMEOUT": "2.5"}):
            s = ServiceSettings()
        assert s.PROFILE_API_KEY == "k-123"
        assert s.UPSTREAM_TIMEOUT == 2.5

    def test_docker_service_discovery(self):
        """Docker 环境下默认使用服务名而非 localhost"""
        with patch.dict(os.environ, {"DOCKER_CONTAINER": "true"}, clear=False):
            from skyblock_service import config as cfg_module
            assert cfg_module._default_mongo_host() == "mongodb"

    def test_local_defaults(self):
        with patch.dict(os.environ, {"DOCKER_CONTAINER": "false"}, clear=False), \
             patch("skyblock_service.config.os.path.exists", return_value=False):
            from skyblock_service import config as cfg_module
            assert cfg_module._default_mongo_host() == "localhost"


# ─────────────────────────────────────────────────────────
# 2. 缓存层测试
# ─────────────────────────────────────────────────────────

class TestTTLCache:
    def setup_method(self):
        from skyblock_service.layers.cache import TTLCache
        self.clock = FakeClock()
        self.cache = TTLCache("test", ttl=60, check_period=0, failure_ttl=10, clock=self.clock)

    def test_set_then_get(self):
        self.cache.set("k", {"v": 1}, ttl=5)
        assert self.cache.get("k") == {"v": 1}
        assert self.cache.has("k")

    def test_expires_after_ttl(self):
        self.cache.set("k", "v", ttl=5)
        self.clock.advance(4)
        assert self.cache.get("k") == "v"
        self.clock.advance(1)
        assert self.cache.get("k") is None
        assert not self.cache.has("k")

    def test_default_ttl(self):
        self.cache.set("k", "v")
        self.clock.advance(59)
        assert self.cache.has("k")
        self.clock.advance(1)
        assert not self.cache.has("k")

    def test_falsy_value_is_present(self):
        self.cache.set("empty", [])
        assert self.cache.has("empty")
        assert self.cache.get("empty") == []

    def test_failure_namespace_independent(self):
        err = RuntimeError("boom")
        self.cache.remember_failure("k", err)
        assert self.cache.has_failure("k")
        assert self.cache.get_failure("k") is err
        assert not self.cache.has("k")
        assert self.cache.get("k") is None

    def test_success_write_does_not_touch_failure(self):
        err = RuntimeError("boom")
        self.cache.set("k", "v")
        self.cache.remember_failure("k", err)
        assert self.cache.has("k")
        assert self.cache.get_failure("k") is err

    def test_failure_default_ttl(self):
        self.cache.remember_failure("k", RuntimeError("x"))
        self.clock.advance(9)
        assert self.cache.has_failure("k")
        self.clock.advance(1)
        assert not self.cache.has_failure("k")
        assert self.cache.get_failure("k") is None

    def test_failure_ttl_override(self):
        self.cache.remember_failure("k", RuntimeError("x"), ttl=600)
        self.clock.advance(599)
        assert self.cache.has_failure("k")

    def test_delete_and_clear(self):
        self.cache.set("a", 1)
        self.cache.set("b", 2)
        self.cache.remember_failure("c", RuntimeError("x"))
        self.cache.delete("a")
        assert not self.cache.has("a") and self.cache.has("b")
        self.cache.clear()
        assert not self.cache.has("b")
        assert not self.cache.has_failure("c")

    def test_sweep_removes_expired(self):
        self.cache.set("short", 1, ttl=1)
        self.cache.set("long", 2, ttl=100)
        self.cache.remember_failure("f", RuntimeError("x"), ttl=1)
        self.clock.advance(2)
        assert self.cache.sweep() == 2
        stats = self.cache.stats()
        assert stats["entries"] == 1 and stats["failures"] == 0

    def test_keys_only_live(self):
        self.cache.set("a", 1, ttl=1)
        self.cache.set("b", 2, ttl=10)
        self.clock.advance(5)
        assert self.cache.keys() == ["b"]

    @pytest.mark.asyncio
    async def test_periodic_sweeper(self):
        from skyblock_service.layers.cache import TTLCache
        cache = TTLCache("sweep", ttl=1, check_period=0.01, clock=self.clock)
        cache.set("a", 1)
        self.clock.advance(5)
        cache.start_sweeper()
        await asyncio.sleep(0.05)
        await cache.stop_sweeper()
        assert cache.stats()["entries"] == 0

    @pytest.mark.asyncio
    async def test_sweeper_disabled(self):
        self.cache.start_sweeper()
        assert self.cache._sweeper is None
        await self.cache.stop_sweeper()


class TestCacheKeys:
    def test_key_format(self):
        from skyblock_service.layers.cache import _make_key
        assert _make_key("identity", "technoblade") == "identity:technoblade"

    def test_long_key_hashed(self):
        from skyblock_service.layers.cache import _make_key
        assert len(_make_key("ns", *["part"] * 50)) <= 250

    def test_namespaces_do_not_collide(self):
        from skyblock_service.layers.cache import _make_key
        assert _make_key("profiles", "abc") != _make_key("profile", "abc")


# ─────────────────────────────────────────────────────────
# 3. 处理层测试
# ─────────────────────────────────────────────────────────

class TestProcessingLayer:
    def setup_method(self):
        from skyblock_service.layers.processing import ProcessingLayer
        self.proc = ProcessingLayer()

    def test_identity_ok(self):
        identity = self.proc.to_identity({"id": PLAYER_ID.upper(), "name": "Technoblade"})
        assert identity.id == PLAYER_ID
        assert identity.name == "Technoblade"

    def test_identity_bad_id(self):
        from skyblock_service.errors import ErrorKind, ValidationError
        with pytest.raises(ValidationError) as exc_info:
            self.proc.to_identity({"id": "xyz", "name": "Technoblade"})
        assert exc_info.value.kind is ErrorKind.VALIDATION
        assert any(v.startswith("id:") for v in exc_info.value.violations)

    def test_identity_name_too_long(self):
        from skyblock_service.errors import ValidationError
        with pytest.raises(ValidationError) as exc_info:
            self.proc.to_identity({"id": PLAYER_ID, "name": "x" * 17})
        assert any(v.startswith("name:") for v in exc_info.value.violations)

    def test_profile_list_mode_default(self):
        profiles = self.proc.to_profile_list([
            {"profile_id": PROFILE_ID, "cute_name": "Apple", "selected": True},
            {"profile_id": PROFILE_ID, "cute_name": "Banana", "game_mode": "ironman", "selected": False},
        ])
        assert [p.mode for p in profiles] == ["normal", "ironman"]
        assert profiles[0].is_active is True
        assert profiles[0].label == "Apple"

    def test_profile_list_none_is_empty(self):
        assert self.proc.to_profile_list(None) == []

    def test_profile_list_violations_verbatim(self):
        from skyblock_service.errors import ValidationError
        with pytest.raises(ValidationError) as exc_info:
            self.proc.to_profile_list([
                {"profile_id": "not-a-uuid", "cute_name": "Durian", "selected": True},
            ])
        err = exc_info.value
        assert len(err.violations) == 2
        assert str(err) == "; ".join(err.violations)

    def test_profile_detail_requires_members(self):
        from skyblock_service.errors import ValidationError
        with pytest.raises(ValidationError):
            self.proc.to_profile_detail(None)
        detail = self.proc.to_profile_detail({"profile_id": PROFILE_ID, "members": {PLAYER_ID: {}}})
        assert detail.profile_id == PROFILE_ID
        assert detail.mode == "normal"

    def test_profile_detail_rejects_bad_member_key(self):
        from skyblock_service.errors import ValidationError
        with pytest.raises(ValidationError):
            self.proc.to_profile_detail({"profile_id": PROFILE_ID, "members": {"nope": {}}})


# ─────────────────────────────────────────────────────────
# 4. 分析层测试
# ─────────────────────────────────────────────────────────

class TestAnalysisLayer:
    def test_level_boundaries(self):
        from skyblock_service.layers.analysis import level_from_experience
        assert level_from_experience(0) == 0
        assert level_from_experience(1) == 1
        assert level_from_experience(3000) == 1
        assert level_from_experience(3001) == 2
        assert level_from_experience(12000) == 2

    def test_level_clamps_at_max(self):
        from skyblock_service.layers.analysis import CUMULATIVE_XP, MAX_LEVEL, level_from_experience
        assert MAX_LEVEL == 10
        assert CUMULATIVE_XP[-1] == 1247000
        assert level_from_experience(CUMULATIVE_XP[-1]) == MAX_LEVEL - 1
        assert level_from_experience(CUMULATIVE_XP[-1] + 1) == MAX_LEVEL
        assert level_from_experience(10 ** 9) == MAX_LEVEL

    def test_level_monotone(self):
        from skyblock_service.layers.analysis import level_from_experience
        levels = [level_from_experience(xp) for xp in range(0, 1_500_000, 997)]
        assert levels == sorted(levels)

    def test_core_node_bonus(self):
        from skyblock_service.layers.analysis import core_node_bonus
        assert core_node_bonus(0) == 0
        assert core_node_bonus(4) == 1
        assert core_node_bonus(5) == 2
        assert core_node_bonus(7) == 3
        assert core_node_bonus(10) == 5

    def test_budget_level5_core_node4(self):
        """hotm 等级 5、special_0 等级 4 → 预算 12"""
        from skyblock_service.layers.analysis import budget_for
        assert budget_for(5, {"special_0": 4, "mining_speed": 63}) == 12

    def test_budget_clamps_table(self):
        from skyblock_service.layers.analysis import budget_for
        assert budget_for(0, {}) == 1
        assert budget_for(10, {"special_0": 10}) == 25

    def test_resource_triples(self):
        from skyblock_service.layers.analysis import resource_triples
        triples = resource_triples({"powder_mithril": 100, "powder_spent_mithril": 50, "powder_glacite": 7})
        assert [t.kind for t in triples] == ["mithril", "gemstone", "glacite"]
        assert (triples[0].owned, triples[0].consumed_elsewhere, triples[0].total) == (100, 50, 150)
        assert triples[1].total == 0
        assert triples[2].total == 7

    def test_compute_member_metrics(self):
        from skyblock_service.layers.analysis import compute_member_metrics
        metrics = compute_member_metrics(_member_payload(
            experience=150000,
            nodes={"special_0": 4, "mining_speed": 50},
            powder_gemstone=10,
            powder_spent_gemstone=5,
        ))
        assert metrics.level == 5
        assert metrics.budget == 12
        assert metrics.node_levels["mining_speed"] == 50
        assert metrics.resources[1].total == 15
        dumped = metrics.model_dump(by_alias=True)
        assert "nodeLevels" in dumped
        assert "consumedElsewhere" in dumped["resources"][0]

    def test_compute_member_metrics_without_core(self):
        from skyblock_service.layers.analysis import compute_member_metrics
        metrics = compute_member_metrics({"player_id": PLAYER_ID})
        assert metrics.level == 0
        assert metrics.budget == 1
        assert all(t.total == 0 for t in metrics.resources)

    def test_compute_member_metrics_bad_payload(self):
        from skyblock_service.errors import ValidationError
        from skyblock_service.layers.analysis import compute_member_metrics
        with pytest.raises(ValidationError):
            compute_member_metrics({"mining_core": {"experience": "lots"}})

    def test_non_numeric_counter_is_validation_error(self):
        from skyblock_service.errors import ErrorKind, ValidationError
        from skyblock_service.layers.analysis import compute_member_metrics
        with pytest.raises(ValidationError) as exc_info:
            compute_member_metrics({"mining_core": {"experience": 1, "powder_mithril": "lots"}})
        assert exc_info.value.kind is ErrorKind.VALIDATION
        assert any("powder_mithril" in v for v in exc_info.value.violations)

    def test_fractional_counter_rejected(self):
        from skyblock_service.errors import ValidationError
        from skyblock_service.layers.analysis import compute_member_metrics
        with pytest.raises(ValidationError):
            compute_member_metrics(_member_payload(powder_spent_glacite=1.5))

    def test_metrics_are_frozen(self):
        from pydantic import ValidationError as PydanticValidationError
        from skyblock_service.layers.analysis import compute_member_metrics
        metrics = compute_member_metrics(_member_payload())
        with pytest.raises(PydanticValidationError):
            metrics.level = 3


# ─────────────────────────────────────────────────────────
# 5. API 响应模型测试
# ─────────────────────────────────────────────────────────

class TestApiResponse:
    def test_ok(self):
        from skyblock_service.models.response import ApiResponse
        r = ApiResponse.ok(data={"k": "v"}, message="done")
        assert r.success and r.error is None

    def test_fail(self):
        from skyblock_service.models.response import ApiResponse
        r = ApiResponse.fail(error="oops")
        assert not r.success and r.error == "oops"


# ─────────────────────────────────────────────────────────
# 6. HTTP 路由测试（TestClient，解析器均被 mock）
# ─────────────────────────────────────────────────────────

@pytest.fixture(scope="module")
def client():
    """创建测试客户端，条目存储只保存在内存中"""
    from skyblock_service.config import settings
    with patch.object(settings, "LOCAL_STORE_PATH", ""), \
         patch.object(settings, "ENTRY_STORE_BACKEND", "local"), \
         patch("skyblock_service.db.entry_store._entry_store", None):
        from skyblock_service.main import app
        with TestClient(app) as c:
            yield c


def _identity():
    from skyblock_service.models.entities import Identity
    return Identity(id=PLAYER_ID, name="Technoblade")


class TestHealthRoutes:
    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200 and r.json()["data"]["status"] == "ok"

    def test_healthz(self, client):
        assert client.get("/healthz").json()["status"] == "ok"

    def test_readyz(self, client):
        assert client.get("/readyz").json()["ready"] is True

    def test_root(self, client):
        body = client.get("/").json()
        assert "version" in body and "docs" in body


class TestPlayerRoutes:
    def test_by_name(self, client):
        with patch("skyblock_service.routers.player.get_identity_resolver") as get_resolver:
            get_resolver.return_value.resolve = AsyncMock(return_value=_identity())
            r = client.get("/api/player/name/Technoblade")
        assert r.status_code == 200
        assert r.json()["data"] == {"id": PLAYER_ID, "name": "Technoblade"}

    def test_by_name_malformed(self, client):
        assert client.get("/api/player/name/bad-name!").status_code == 422
        assert client.get(f"/api/player/name/{'x' * 17}").status_code == 422

    def test_by_name_not_found(self, client):
        from skyblock_service.errors import NotFoundError
        with patch("skyblock_service.routers.player.get_identity_resolver") as get_resolver:
            get_resolver.return_value.resolve = AsyncMock(side_effect=NotFoundError("ghost"))
            r = client.get("/api/player/name/ghost")
        assert r.status_code == 404
        body = r.json()
        assert body["success"] is False
        assert body["error"] == "not_found"
        assert body["data"] == {"kind": "not_found", "message": body["message"]}
        assert set(body) == {"success", "data", "message", "error"}

    def test_by_uuid(self, client):
        with patch("skyblock_service.routers.player.get_identity_resolver") as get_resolver:
            get_resolver.return_value.resolve_by_id = AsyncMock(return_value=_identity())
            r = client.get(f"/api/player/uuid/{PLAYER_ID}")
        assert r.status_code == 200
        get_resolver.return_value.resolve_by_id.assert_awaited_once_with(PLAYER_ID)


class TestProfileRoutes:
    def test_list_profiles(self, client):
        from skyblock_service.models.entities import ProfileSummary
        summary = ProfileSummary(profile_id=PROFILE_ID, label="Apple", is_active=True)
        with patch("skyblock_service.routers.profiles.get_profile_list_resolver") as get_resolver:
            get_resolver.return_value.resolve = AsyncMock(return_value=[summary])
            r = client.get("/api/profiles/Technoblade")
        body = r.json()
        assert r.status_code == 200
        assert body["data"]["count"] == 1
        assert body["data"]["profiles"][0] == {
            "profileId": PROFILE_ID, "label": "Apple", "mode": "normal", "isActive": True,
        }

    def test_list_profiles_rejects_malformed_name(self, client):
        with patch("skyblock_service.routers.profiles.get_profile_list_resolver") as get_resolver:
            get_resolver.return_value.resolve = AsyncMock(return_value=[])
            assert client.get(f"/api/profiles/{'x' * 17}").status_code == 422
            assert client.get("/api/profiles/bad-name!").status_code == 422
            assert client.get(f"/api/profiles/{'g' * 32}").status_code == 422
        get_resolver.return_value.resolve.assert_not_awaited()

    def test_list_profiles_by_uuid(self, client):
        dashed = f"{PLAYER_ID[:8]}-{PLAYER_ID[8:12]}-{PLAYER_ID[12:16]}-{PLAYER_ID[16:20]}-{PLAYER_ID[20:]}"
        with patch("skyblock_service.routers.profiles.get_profile_list_resolver") as get_resolver:
            get_resolver.return_value.resolve = AsyncMock(return_value=[])
            assert client.get(f"/api/profiles/{PLAYER_ID}").status_code == 200
            assert client.get(f"/api/profiles/{dashed}").status_code == 200

    def test_transport_error_status(self, client):
        from skyblock_service.errors import TransportError
        with patch("skyblock_service.routers.profiles.get_profile_list_resolver") as get_resolver:
            get_resolver.return_value.resolve = AsyncMock(
                side_effect=TransportError("upstream", status=403, cause="Invalid API key"),
            )
            r = client.get("/api/profiles/Technoblade")
        assert r.status_code == 502
        assert r.json()["data"]["cause"] == "Invalid API key"

    def test_network_error_is_unavailable(self, client):
        from skyblock_service.errors import TransportError
        with patch("skyblock_service.routers.profiles.get_profile_list_resolver") as get_resolver:
            get_resolver.return_value.resolve = AsyncMock(side_effect=TransportError("timeout"))
            r = client.get("/api/profiles/Technoblade")
        assert r.status_code == 503

    def test_member_metrics(self, client):
        from skyblock_service.layers.analysis import compute_member_metrics
        metrics = compute_member_metrics(_member_payload(experience=150000, nodes={"special_0": 4}))
        with patch("skyblock_service.routers.profiles.get_identity_resolver") as get_identity, \
             patch("skyblock_service.routers.profiles.get_profile_detail_resolver") as get_detail:
            get_identity.return_value.resolve = AsyncMock(return_value=_identity())
            get_detail.return_value.resolve_member_metrics = AsyncMock(return_value=metrics)
            r = client.get(f"/api/profile/{PROFILE_ID}/player/Technoblade")
        assert r.status_code == 200
        data = r.json()["data"]
        assert data["metrics"]["budget"] == 12
        assert data["metrics"]["nodeLevels"] == {"special_0": 4}
        get_detail.return_value.resolve_member_metrics.assert_awaited_once_with(PROFILE_ID, PLAYER_ID)

    def test_member_not_in_profile(self, client):
        from skyblock_service.errors import PlayerNotInProfileError
        with patch("skyblock_service.routers.profiles.get_identity_resolver") as get_identity, \
             patch("skyblock_service.routers.profiles.get_profile_detail_resolver") as get_detail:
            get_identity.return_value.resolve = AsyncMock(return_value=_identity())
            get_detail.return_value.resolve_member_metrics = AsyncMock(
                side_effect=PlayerNotInProfileError(PLAYER_ID, PROFILE_ID),
            )
            r = client.get(f"/api/profile/{PROFILE_ID}/player/Technoblade")
        assert r.status_code == 404
        assert r.json()["error"] == "membership"

    def test_bad_profile_id(self, client):
        assert client.get("/api/profile/not-a-uuid/player/Technoblade").status_code == 422


class TestCacheRoutes:
    def test_stats(self, client):
        data = client.get("/api/cache/stats").json()["data"]
        assert {"identity", "profiles", "profile"} == set(data)

    def test_clear_named(self, client):
        from skyblock_service.layers.cache import get_profile_cache
        get_profile_cache().set("profile:x", {"a": 1})
        r = client.post("/api/cache/clear", json={"cache": "profile", "key": "profile:x"})
        assert r.status_code == 200
        assert not get_profile_cache().has("profile:x")

    def test_clear_unknown(self, client):
        assert client.post("/api/cache/clear", json={"cache": "nope"}).status_code == 404


# ─────────────────────────────────────────────────────────
# 7. 启动流程测试
# ─────────────────────────────────────────────────────────

class TestStartup:
    def test_mongodb_unavailable_starts_degraded(self):
        """MongoDB 不可用时服务仍能启动，健康检查报告断开"""
        from skyblock_service.config import settings
        from skyblock_service.db.entry_store import MongoEntryStore
        with patch.object(settings, "ENTRY_STORE_BACKEND", "mongodb"), \
             patch("skyblock_service.db.entry_store._entry_store", None), \
             patch("skyblock_service.main.init_mongodb", AsyncMock(return_value=False)), \
             patch("skyblock_service.main.all_caches", return_value={}):
            from skyblock_service.db.entry_store import get_entry_store
            from skyblock_service.main import app
            with TestClient(app) as c:
                r = c.get("/health")
                assert isinstance(get_entry_store(), MongoEntryStore)
        assert r.status_code == 200
        assert r.json()["data"]["databases"]["mongodb"]["status"] == "disconnected"
