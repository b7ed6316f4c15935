"""
streamhub.services.chat_service
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

聊天业务 —— 输入校验、历史查询、HTTP 发送（持久化 + 广播）与实时连接转发。

两条发送路径都要求调用方提供已校验令牌的权限，且直播必须开启聊天。

实时连接上的消息只做广播，持久化由发送方的客户端独立完成；两条路径互不依赖，
持久化失败不影响已完成的广播。
"""
from __future__ import annotations

from streamhub.cms import CmsClient
from streamhub.core.errors import NotFound, ValidationError
from streamhub.core.logging import get_logger
from streamhub.core.security import check_chat_input
from streamhub.schemas.cms import ChatMessage, ChatMessageCreate
from streamhub.schemas.events import ChatEvent, chat_event
from streamhub.services.broadcast_hub import ConnectionRegistry

logger = get_logger(__name__)


class ChatService:
    """聊天服务。

    Attributes:
        cms: CMS 客户端。
        hub: 直播间连接注册表。
        history_limit: 默认历史消息条数。
    """

    def __init__(self, cms: CmsClient, hub: ConnectionRegistry, history_limit: int = 50) -> None:
        self.cms = cms
        self.hub = hub
        self.history_limit = history_limit

    async def _require_chat_open(self, stream_id: str) -> None:
        stream = await self.cms.get_stream_session(stream_id)
        if stream is None:
            raise NotFound("直播不存在")
        if not stream.chat_enabled:
            raise ValidationError("该直播已关闭聊天")

    async def history(self, stream_id: str, limit: int | None = None) -> list[ChatMessage]:
        """最近 ``limit`` 条消息，按时间正序。"""
        return await self.cms.list_chat_messages(stream_id, limit or self.history_limit)

    async def post(
        self,
        stream_id: str,
        message: str,
        viewer_name: str,
        message_type: str = "regular",
        *,
        permission: str,
        message_id: str | None = None,
        viewer_ip: str | None = None,
    ) -> ChatMessage:
        """HTTP 发送：校验 → 持久化 → 广播到直播间。

        ``permission`` 来自调用方已校验过的访问令牌。

        Raises:
            Unauthorized: 权限不足。
            NotFound: 直播不存在。
            ValidationError: 输入不合法或直播已关闭聊天。
        """
        checked = check_chat_input(message, viewer_name, message_type, permission)
        await self._require_chat_open(stream_id)

        saved = await self.cms.create_chat_message(
            ChatMessageCreate(
                message_content=checked.message,
                viewer_name=checked.viewer_name,
                stream_id=stream_id,
                message_type=checked.message_type,
                message_id=message_id,
                viewer_ip=viewer_ip,
            ),
        )
        delivered = await self.hub.broadcast(
            stream_id,
            chat_event(
                viewer_name=checked.viewer_name,
                message=checked.message,
                message_type=checked.message_type,
                message_id=message_id,
            ),
        )
        logger.info("聊天消息已保存 | stream=%s | id=%s | delivered=%d", stream_id, saved.id, delivered)
        return saved

    async def relay(
        self,
        stream_id: str,
        message: str,
        viewer_name: str,
        message_type: str,
        *,
        permission: str,
        message_id: str | None = None,
    ) -> ChatEvent:
        """实时连接发送：校验后立即广播，不做持久化。

        每条消息都重新读取直播的 ``chat_enabled``，关闭聊天后立即生效。
        """
        checked = check_chat_input(message, viewer_name, message_type, permission)
        await self._require_chat_open(stream_id)
        event = chat_event(
            viewer_name=checked.viewer_name,
            message=checked.message,
            message_type=checked.message_type,
            message_id=message_id,
        )
        await self.hub.broadcast(stream_id, event)
        return event
