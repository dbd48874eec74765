"""
数据解析服务配置模块
支持从环境变量读取配置，自动检测 Docker 容器环境并启用服务发现
"""

import os
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MINUTE = 60
HOUR = 60 * MINUTE
DAY = 24 * HOUR


def _is_docker() -> bool:
    """检测当前是否运行在 Docker 容器内"""
    return (
        os.path.exists("/.dockerenv")
        or os.environ.get("DOCKER_CONTAINER", "").lower() in ("1", "true", "yes")
    )


def _default_mongo_host() -> str:
    """Docker 环境使用服务名 'mongodb'，本地使用 'localhost'"""
    return "mongodb" if _is_docker() else "localhost"


class ServiceSettings(BaseSettings):
    """数据解析服务配置"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── 基础配置 ──────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8002)
    DEBUG: bool = Field(default=False)
    ALLOWED_ORIGINS: List[str] = Field(
        default_factory=lambda: ["*"]
    )

    # ── 玩家存储配置 ───────────────────────────────────────
    ENTRY_STORE_BACKEND: str = Field(default="local")        # local / mongodb
    LOCAL_STORE_PATH: str = Field(default="./data/players.jsonl")  # 为空则仅内存

    # ── MongoDB 配置（支持服务发现） ───────────────────────
    MONGODB_HOST: str = Field(default_factory=_default_mongo_host)
    MONGODB_PORT: int = Field(default=27017)
    MONGODB_USERNAME: str = Field(default="")
    MONGODB_PASSWORD: str = Field(default="")
    MONGODB_DATABASE: str = Field(default="skyblock")
    MONGODB_AUTH_SOURCE: str = Field(default="admin")
    MONGODB_PLAYER_COLLECTION: str = Field(default="players")
    MONGO_MAX_CONNECTIONS: int = Field(default=50)
    MONGO_MIN_CONNECTIONS: int = Field(default=5)
    MONGO_CONNECT_TIMEOUT_MS: int = Field(default=30000)
    MONGO_SOCKET_TIMEOUT_MS: int = Field(default=60000)
    MONGO_SERVER_SELECTION_TIMEOUT_MS: int = Field(default=5000)

    @property
    def MONGO_URI(self) -> str:
        if self.MONGODB_USERNAME and self.MONGODB_PASSWORD:
            return (
                f"mongodb://{self.MONGODB_USERNAME}:{self.MONGODB_PASSWORD}"
                f"@{self.MONGODB_HOST}:{self.MONGODB_PORT}"
                f"/{self.MONGODB_DATABASE}?authSource={self.MONGODB_AUTH_SOURCE}"
            )
        return f"mongodb://{self.MONGODB_HOST}:{self.MONGODB_PORT}/{self.MONGODB_DATABASE}"

    # ── 上游数据源配置 ─────────────────────────────────────
    IDENTITY_API_URL: str = Field(
        default="https://api.minecraftservices.com/minecraft/profile/lookup"
    )
    PROFILE_API_URL: str = Field(default="https://api.hypixel.net/v2/skyblock")
    PROFILE_API_KEY: str = Field(default="")
    UPSTREAM_TIMEOUT: float = Field(default=10.0)         # 单次请求超时（秒）
    UPSTREAM_CONNECT_TIMEOUT: float = Field(default=5.0)  # 建连超时（秒）

    # ── 缓存配置（秒） ─────────────────────────────────────
    FAILURE_CACHE_TTL: int = Field(default=5 * MINUTE)    # 失败缓存默认 TTL

    IDENTITY_CACHE_TTL: int = Field(default=DAY)
    IDENTITY_CACHE_CHECK_PERIOD: int = Field(default=DAY)
    IDENTITY_SUCCESS_TTL: int = Field(default=HOUR)
    IDENTITY_FAILURE_TTL: int = Field(default=HOUR)

    PROFILES_CACHE_TTL: int = Field(default=DAY)
    PROFILES_CACHE_CHECK_PERIOD: int = Field(default=8 * HOUR)
    PROFILES_FAILURE_TTL: int = Field(default=10 * MINUTE)

    PROFILE_CACHE_TTL: int = Field(default=2 * HOUR)
    PROFILE_CACHE_CHECK_PERIOD: int = Field(default=30 * MINUTE)
    PROFILE_FAILURE_TTL: int = Field(default=10 * MINUTE)

    # ── 日志配置 ──────────────────────────────────────────
    LOG_LEVEL: str = Field(default="INFO")


@lru_cache
def get_settings() -> ServiceSettings:
    """获取全局配置（单例）"""
    return ServiceSettings()


settings = get_settings()
