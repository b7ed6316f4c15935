"""
streamhub.cms
~~~~~~~~~~~~~

CMS 协作方接口 —— 直播、访问链接、聊天消息、直播设置的异步存取。

业务层只依赖 ``CmsClient`` 协议；具体后端由 ``create_cms()`` 按
``settings.CMS_BACKEND`` 选择：

- ``cosmic`` → ``CosmicCms``（Cosmic REST，httpx）
- ``mongo``  → ``MongoCms``（MongoDB，motor）

约定:
  - 后端不可用时抛出 ``BackendUnavailable``。
  - "未找到" 对列表接口映射为空列表，对单条查询映射为 ``None``。
  - 直播与访问链接列表按创建时间倒序；聊天消息按时间正序。
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from streamhub.core.config import Settings
from streamhub.schemas.cms import (
    AccessLink,
    AccessLinkCreate,
    ChatMessage,
    ChatMessageCreate,
    StreamSession,
    StreamSessionCreate,
    StreamSessionUpdate,
    StreamSettings,
    StreamSettingsUpdate,
)


@runtime_checkable
class CmsClient(Protocol):
    """CMS 存取协议。"""

    async def list_stream_sessions(self) -> list[StreamSession]: ...

    async def get_stream_session(self, stream_id: str) -> StreamSession | None: ...

    async def create_stream_session(self, fields: StreamSessionCreate) -> StreamSession: ...

    async def update_stream_session(
        self, stream_id: str, fields: StreamSessionUpdate,
    ) -> StreamSession: ...

    async def list_access_links(self, stream_id: str | None = None) -> list[AccessLink]: ...

    async def get_access_link_by_token(self, token: str) -> AccessLink | None: ...

    async def create_access_link(self, fields: AccessLinkCreate) -> AccessLink: ...

    async def increment_access_link_usage(self, link_id: str) -> None: ...

    async def get_stream_settings(self) -> StreamSettings | None: ...

    async def update_stream_settings(
        self, settings_id: str, fields: StreamSettingsUpdate,
    ) -> StreamSettings: ...

    async def list_chat_messages(self, stream_id: str, limit: int = 50) -> list[ChatMessage]: ...

    async def create_chat_message(self, fields: ChatMessageCreate) -> ChatMessage: ...

    async def aclose(self) -> None: ...


async def create_cms(settings: Settings) -> CmsClient:
    """按配置创建 CMS 客户端。应在 lifespan startup 中调用。"""
    if settings.CMS_BACKEND == "mongo":
        from streamhub.cms.mongo import MongoCms

        return await MongoCms.connect(settings)

    from streamhub.cms.cosmic import CosmicCms

    return CosmicCms(settings)
