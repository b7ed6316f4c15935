"""
streamhub.video.mux
~~~~~~~~~~~~~~~~~~~

Mux 视频服务封装 —— 基于官方 ``mux-python`` SDK。

SDK 是同步阻塞的，所有 API 调用都通过 ``asyncio.to_thread`` 放到工作线程执行，
避免阻塞事件循环中的其他房间。

播放 / 缩略图 / 推流地址是纯字符串拼接，不访问网络。
"""
from __future__ import annotations

import asyncio
from typing import Literal
from urllib.parse import urlencode

import mux_python
from mux_python.exceptions import ApiException, NotFoundException, UnauthorizedException
from pydantic import BaseModel, Field

from streamhub.core.config import Settings
from streamhub.core.errors import BackendUnavailable, ConfigurationError
from streamhub.core.logging import get_logger

logger = get_logger(__name__)

_CREDENTIAL_VARIABLES = ("MUX_TOKEN_ID", "MUX_TOKEN_SECRET")

FitMode = Literal["preserve", "stretch", "crop", "smartcrop", "pad"]


class LiveInput(BaseModel):
    """Mux 直播输入（推流端）。"""

    id: str = Field(..., description="Mux live stream ID")
    ingest_key: str = Field(..., description="推流密钥")
    playback_ids: list[str] = Field(default_factory=list, description="公开播放 ID 列表")
    status: str = Field(default="idle", description="idle / active / disabled")

    @property
    def playback_id(self) -> str | None:
        return self.playback_ids[0] if self.playback_ids else None


class LiveInputOptions(BaseModel):
    playback_policy: Literal["public", "signed"] = "public"
    reconnect_window: int = Field(default=60, ge=0, description="断流重连窗口（秒）")
    record: bool = Field(default=True, description="是否为直播生成录像资产")
    passthrough: str | None = Field(default=None, max_length=255)


class MuxValidation(BaseModel):
    is_configured: bool
    missing_variables: list[str] = Field(default_factory=list)
    credentials_valid: bool | None = None


class MuxService:
    """Mux Video API 封装。

    Attributes:
        test_mode: 非生产环境创建测试直播（Mux 不计费，5 分钟后自动断开）。
    """

    def __init__(self, settings: Settings) -> None:
        self._token_id = settings.MUX_TOKEN_ID
        self._token_secret = settings.MUX_TOKEN_SECRET
        self._stream_base_url = settings.MUX_STREAM_BASE_URL.rstrip("/")
        self._image_base_url = settings.MUX_IMAGE_BASE_URL.rstrip("/")
        self._rtmp_base_url = settings.MUX_RTMP_BASE_URL.rstrip("/")
        self.test_mode = settings.mux_test_mode
        self._live_api: mux_python.LiveStreamsApi | None = None

    # ── 凭证 ──────────────────────────────────────────────────────────

    def missing_variables(self) -> list[str]:
        values = {"MUX_TOKEN_ID": self._token_id, "MUX_TOKEN_SECRET": self._token_secret}
        return [name for name in _CREDENTIAL_VARIABLES if not values[name]]

    @property
    def is_configured(self) -> bool:
        return not self.missing_variables()

    def _get_live_api(self) -> mux_python.LiveStreamsApi:
        """惰性创建 LiveStreamsApi 客户端。

        Raises:
            ConfigurationError: 未配置 MUX_TOKEN_ID / MUX_TOKEN_SECRET。
        """
        if self._live_api is None:
            missing = self.missing_variables()
            if missing:
                logger.error("Mux 凭证缺失 | missing=%s", ",".join(missing))
                raise ConfigurationError(f"Mux 凭证未配置: {', '.join(missing)}")
            configuration = mux_python.Configuration()
            configuration.username = self._token_id
            configuration.password = self._token_secret
            self._live_api = mux_python.LiveStreamsApi(mux_python.ApiClient(configuration))
            logger.info("Mux LiveStreamsApi 客户端已创建")
        return self._live_api

    # ── 直播输入 ──────────────────────────────────────────────────────

    async def create_live_input(self, options: LiveInputOptions | None = None) -> LiveInput:
        """创建一个 Mux 直播输入。

        Raises:
            ConfigurationError: 凭证缺失。
            BackendUnavailable: Mux API 调用失败。
        """
        options = options or LiveInputOptions()
        live_api = self._get_live_api()

        policies = [options.playback_policy]
        request_kwargs: dict = {
            "playback_policy": policies,
            "reconnect_window": options.reconnect_window,
            "test": self.test_mode,
        }
        if options.record:
            request_kwargs["new_asset_settings"] = mux_python.CreateAssetRequest(
                playback_policy=policies,
            )
        if options.passthrough is not None:
            request_kwargs["passthrough"] = options.passthrough
        create_request = mux_python.CreateLiveStreamRequest(**request_kwargs)

        try:
            response = await asyncio.to_thread(live_api.create_live_stream, create_request)
        except ApiException as e:
            logger.error("创建 Mux 直播输入失败 | status=%s | %s", e.status, e.reason)
            raise BackendUnavailable("创建视频直播输入失败") from e

        data = response.data
        live_input = LiveInput(
            id=data.id,
            ingest_key=data.stream_key,
            playback_ids=[pb.id for pb in (data.playback_ids or [])],
            status=data.status or "idle",
        )
        logger.info("Mux 直播输入已创建 | id=%s | test=%s", live_input.id, self.test_mode)
        return live_input

    async def delete_live_input(self, live_input_id: str) -> None:
        """删除直播输入；不存在视为成功。"""
        live_api = self._get_live_api()
        try:
            await asyncio.to_thread(live_api.delete_live_stream, live_input_id)
        except NotFoundException:
            logger.info("Mux 直播输入不存在（可能已删除） | id=%s", live_input_id)
            return
        except ApiException as e:
            logger.error("删除 Mux 直播输入失败 | id=%s | status=%s", live_input_id, e.status)
            raise BackendUnavailable("删除视频直播输入失败") from e
        logger.info("Mux 直播输入已删除 | id=%s", live_input_id)

    async def validate_credentials(self) -> MuxValidation:
        """检查凭证是否齐全，并用一次轻量列表请求验证其有效性。"""
        missing = self.missing_variables()
        if missing:
            return MuxValidation(is_configured=False, missing_variables=missing)

        live_api = self._get_live_api()
        try:
            await asyncio.to_thread(live_api.list_live_streams, limit=1)
        except UnauthorizedException:
            logger.warning("Mux 凭证无效")
            return MuxValidation(is_configured=True, credentials_valid=False)
        except ApiException as e:
            logger.error("Mux 凭证校验失败 | status=%s", e.status)
            raise BackendUnavailable("视频服务暂时不可用") from e
        return MuxValidation(is_configured=True, credentials_valid=True)

    # ── URL 构造 ──────────────────────────────────────────────────────

    def build_playback_url(self, playback_id: str) -> str:
        return f"{self._stream_base_url}/{playback_id}.m3u8"

    def build_thumbnail_url(
        self,
        playback_id: str,
        width: int = 640,
        height: int = 360,
        fit_mode: FitMode = "smartcrop",
        time: float | None = None,
    ) -> str:
        """生成缩略图地址。

        Example:
            >>> service.build_thumbnail_url("abc123", 853, 480, time=60)
            'https://image.mux.com/abc123/thumbnail.jpg?width=853&height=480&fit_mode=smartcrop&time=60'
        """
        params: dict[str, str | int | float] = {
            "width": width,
            "height": height,
            "fit_mode": fit_mode,
        }
        if time is not None:
            params["time"] = time
        return f"{self._image_base_url}/{playback_id}/thumbnail.jpg?{urlencode(params)}"

    def build_rtmp_url(self, stream_key: str) -> str:
        return f"{self._rtmp_base_url}/{stream_key}"
