"""
streamhub.services.live_system
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

进程级服务容器 —— 在 FastAPI lifespan 中创建，挂载于 ``app.state.services``。

持有所有进程内共享状态（连接注册表、限流计数器）与外部协作方客户端，
关闭时按依赖逆序释放。
"""
from __future__ import annotations

from dataclasses import dataclass

from streamhub.cms import CmsClient, create_cms
from streamhub.core.config import Settings
from streamhub.core.logging import get_logger
from streamhub.core.rate_limit import FixedWindowRateLimiter
from streamhub.core.tasks import drain_background
from streamhub.services.broadcast_hub import ConnectionRegistry
from streamhub.services.chat_service import ChatService
from streamhub.services.stream_service import StreamService
from streamhub.services.token_validator import TokenValidator
from streamhub.video.mux import MuxService

logger = get_logger(__name__)


@dataclass
class AppServices:
    """应用服务集合（每个进程一份）。"""

    settings: Settings
    cms: CmsClient
    mux: MuxService
    hub: ConnectionRegistry
    rate_limiter: FixedWindowRateLimiter
    tokens: TokenValidator
    chat: ChatService
    streams: StreamService

    @classmethod
    def from_parts(
        cls,
        settings: Settings,
        cms: CmsClient,
        mux: MuxService | None = None,
        rate_limiter: FixedWindowRateLimiter | None = None,
    ) -> "AppServices":
        """用给定的协作方组装服务（测试中可注入替身）。"""
        hub = ConnectionRegistry(send_timeout=settings.WS_SEND_TIMEOUT)
        mux = mux or MuxService(settings)
        return cls(
            settings=settings,
            cms=cms,
            mux=mux,
            hub=hub,
            rate_limiter=rate_limiter or FixedWindowRateLimiter(),
            tokens=TokenValidator(cms),
            chat=ChatService(cms, hub, history_limit=settings.CHAT_HISTORY_LIMIT),
            streams=StreamService(cms, mux, hub),
        )

    @classmethod
    async def build(cls, settings: Settings) -> "AppServices":
        cms = await create_cms(settings)
        logger.info("服务容器已创建 | cms=%s", settings.CMS_BACKEND)
        return cls.from_parts(settings, cms)

    async def aclose(self) -> None:
        await self.hub.close_all()
        await drain_background()
        await self.cms.aclose()
        logger.info("服务容器已释放")
