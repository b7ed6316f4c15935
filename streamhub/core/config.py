"""
streamhub.core.config
~~~~~~~~~~~~~~~~~~~~~

服务配置。字段全部来自环境变量或 ``.env`` 文件（pydantic-settings）。

``ENVIRONMENT`` 决定额外读取哪个 ``.env.<环境>`` 文件，它的取值覆盖
通用 ``.env``；进程环境变量始终优先于两者。

CMS、Mux 凭证和管理员令牌可以留空：服务照常启动，真正用到时
才由调用方抛出 ``ConfigurationError``。
"""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_NAME: str = os.getenv("ENVIRONMENT", "dev")

# 未显式设置 LOG_LEVEL 时各环境的默认级别
_DEFAULT_LOG_LEVELS: dict[str, str] = {"dev": "INFO", "test": "DEBUG", "prod": "WARNING"}


class Settings(BaseSettings):
    """StreamHub 运行配置。"""

    # ── 基础 ──────────────────────────────────────────────────────────
    PROJECT_NAME: str = Field(default="StreamHub", description="项目名称")
    VERSION: str = Field(default="0.1.0", description="服务版本")
    ENVIRONMENT: Literal["dev", "test", "prod"] = Field(
        default="dev",
        description="部署环境",
    )

    # ── CMS ───────────────────────────────────────────────────────────
    CMS_BACKEND: Literal["cosmic", "mongo"] = Field(
        default="cosmic",
        description="内容存储后端：cosmic（Cosmic REST）/ mongo（MongoDB）",
    )
    COSMIC_BUCKET_SLUG: str | None = Field(default=None, description="Cosmic Bucket slug")
    COSMIC_READ_KEY: str | None = Field(default=None, description="Cosmic 只读 key")
    COSMIC_WRITE_KEY: str | None = Field(default=None, description="Cosmic 写入 key")
    COSMIC_API_URL: str = Field(
        default="https://api.cosmicjs.com/v3",
        description="Cosmic REST API 根地址",
    )
    CMS_TIMEOUT_SECONDS: float = Field(default=10.0, description="CMS 请求超时（秒）")
    MONGO_URI: str = Field(default="mongodb://localhost:27017", description="MongoDB 连接串")
    MONGO_DB_NAME: str = Field(default="streamhub", description="MongoDB 数据库名")

    # ── Mux ───────────────────────────────────────────────────────────
    MUX_TOKEN_ID: str | None = Field(default=None, description="Mux API Token ID")
    MUX_TOKEN_SECRET: str | None = Field(default=None, description="Mux API Token Secret")
    MUX_STREAM_BASE_URL: str = Field(
        default="https://stream.mux.com",
        description="HLS 播放地址前缀",
    )
    MUX_IMAGE_BASE_URL: str = Field(
        default="https://image.mux.com",
        description="缩略图地址前缀",
    )
    MUX_RTMP_BASE_URL: str = Field(
        default="rtmp://global-live.mux.com:5222/live",
        description="RTMP 推流地址前缀",
    )

    # ── 管理员 / 站点 ─────────────────────────────────────────────────
    ADMIN_ACCESS_ENABLED: bool = Field(
        default=True,
        description="是否对管理接口启用 Bearer 令牌校验",
    )
    ADMIN_TOKEN: str | None = Field(default=None, description="管理员 Bearer 令牌")
    PUBLIC_BASE_URL: str = Field(
        default="https://yourstream.com",
        description="对外访问地址，用于生成观看链接",
    )
    LIVE_WS_URL: str | None = Field(
        default=None,
        description="WebSocket 地址覆盖（为空时由客户端按站点地址推断）",
    )

    # ── 聊天 / 直播间 ─────────────────────────────────────────────────
    CHAT_HISTORY_LIMIT: int = Field(default=50, description="聊天历史默认拉取条数")
    WS_SEND_TIMEOUT: float = Field(
        default=5.0,
        description="单个连接发送超时（秒），超时视为断开",
    )

    # ── 限流 ──────────────────────────────────────────────────────────
    GLOBAL_API_RATE_LIMIT: str = Field(
        default="120/minute",
        description="只读接口的全局限流规则（slowapi 语法）",
    )
    CHAT_RATE_LIMIT: int = Field(default=30, description="聊天发送：窗口内最大请求数")
    CHAT_RATE_WINDOW_MS: int = Field(default=60_000, description="聊天发送：窗口长度（毫秒）")
    TOKEN_RATE_LIMIT: int = Field(default=20, description="令牌校验：窗口内最大请求数")
    TOKEN_RATE_WINDOW_MS: int = Field(default=60_000, description="令牌校验：窗口长度（毫秒）")
    ACCESS_LINK_RATE_LIMIT: int = Field(default=10, description="访问链接创建：窗口内最大请求数")
    ACCESS_LINK_RATE_WINDOW_MS: int = Field(
        default=60_000, description="访问链接创建：窗口长度（毫秒）",
    )
    STREAM_CREATE_RATE_LIMIT: int = Field(default=5, description="直播创建：窗口内最大请求数")
    STREAM_CREATE_RATE_WINDOW_MS: int = Field(
        default=300_000, description="直播创建：窗口长度（毫秒）",
    )
    RATE_LIMIT_SWEEP_INTERVAL: float = Field(
        default=60.0,
        description="限流窗口清理周期（秒）",
    )

    # ── 服务 ──────────────────────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0", description="uvicorn 绑定地址")
    PORT: int = Field(default=8000, description="uvicorn 绑定端口")
    LOG_LEVEL: str = Field(default="INFO", description="日志级别；未设置时按环境取默认值")

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENV_NAME}", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── 派生属性 ──────────────────────────────────────────────────────

    @property
    def is_prod(self) -> bool:
        return self.ENVIRONMENT == "prod"

    @property
    def debug(self) -> bool:
        """FastAPI debug 与 uvicorn 热重载只在 dev 下打开。"""
        return self.ENVIRONMENT == "dev"

    @property
    def effective_log_level(self) -> str:
        if "LOG_LEVEL" in self.model_fields_set:
            return self.LOG_LEVEL
        return _DEFAULT_LOG_LEVELS.get(self.ENVIRONMENT, "INFO")

    @property
    def allow_cors_all_origins(self) -> bool:
        """生产环境之外放开 CORS。"""
        return not self.is_prod

    @property
    def mux_test_mode(self) -> bool:
        """非生产环境创建的 Mux 直播均为测试直播（不计费，限时）。"""
        return not self.is_prod


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings: Settings = get_settings()
