"""
streamhub.client.chat_session
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

观众端聊天会话 —— 合并历史消息与实时推送，并按权限发送消息。

使用方式::

    session = ChatSessionClient(stream_id, "alice", "chat", token, cms)
    await session.start()
    await session.send_message("hello")
    ...
    await session.close()

发送的消息走两条互相独立的路径：实时连接（立即广播）与 CMS（持久化，
供刷新页面后回看）。两者不是事务性的，持久化失败只记录日志。
"""
from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any
from urllib.parse import urlencode

from pydantic import BaseModel, Field
from pydantic import ValidationError as PayloadError
from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed

from streamhub.cms import CmsClient
from streamhub.core.config import Settings, settings
from streamhub.core.errors import AppError
from streamhub.core.logging import get_logger
from streamhub.core.security import check_chat_input
from streamhub.core.tasks import spawn_background
from streamhub.schemas.cms import ChatMessage, ChatMessageCreate, PermissionLevel, can_chat, utcnow
from streamhub.schemas.events import (
    ChatEvent,
    ClientChatData,
    ClientChatEnvelope,
    ViewerCountEvent,
    parse_live_event,
)

logger = get_logger(__name__)

Connector = Callable[[str], Awaitable[Any]]


def live_ws_url(config: Settings) -> str:
    """实时连接地址：优先 ``LIVE_WS_URL``，否则由站点地址推断。"""
    if config.LIVE_WS_URL:
        return config.LIVE_WS_URL
    base = config.PUBLIC_BASE_URL.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://"):]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://"):]
    return f"{base}/ws"


class ChatLine(BaseModel):
    """会话中展示的一条消息（来自历史或实时推送）。"""

    message_id: str | None = None
    message: str
    viewer_name: str
    message_type: str = "regular"
    timestamp: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_history(cls, msg: ChatMessage) -> ChatLine:
        return cls(
            message_id=msg.message_id,
            message=msg.message_content,
            viewer_name=msg.viewer_name,
            message_type=msg.message_type,
            timestamp=msg.timestamp,
        )

    @classmethod
    def from_event(cls, event: ChatEvent) -> ChatLine:
        return cls(
            message_id=event.data.message_id,
            message=event.data.message,
            viewer_name=event.data.viewer_name,
            message_type=event.data.message_type,
            timestamp=event.timestamp,
        )


class ChatSessionClient:
    """单个观众的聊天会话。

    Attributes:
        stream_id: 直播 ID。
        viewer_name: 观众昵称。
        permission: 令牌权限。
        messages: 按时间顺序排列的消息（只追加）。
        viewer_count: 最近一次 ``viewer_count`` 事件中的在线人数。
    """

    def __init__(
        self,
        stream_id: str,
        viewer_name: str,
        permission: PermissionLevel,
        token: str,
        cms: CmsClient,
        *,
        url: str | None = None,
        connect: Connector = ws_connect,
        history_limit: int = 50,
    ) -> None:
        self.stream_id = stream_id
        self.viewer_name = viewer_name
        self.permission = permission
        self.messages: list[ChatLine] = []
        self.viewer_count = 0

        self._token = token
        self._cms = cms
        self._url = url or live_ws_url(settings)
        self._connect = connect
        self._history_limit = history_limit
        self._ws: Any = None
        self._connected = False
        self._receive_task: asyncio.Task[None] | None = None
        self._seen_ids: set[str] = set()

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def can_send(self) -> bool:
        return self._connected and can_chat(self.permission)

    # ── 生命周期 ──────────────────────────────────────────────────────

    async def start(self) -> None:
        """拉取历史消息，然后建立实时连接并开始接收推送。"""
        try:
            history = await self._cms.list_chat_messages(self.stream_id, self._history_limit)
        except Exception as e:
            # 历史加载失败不影响实时聊天
            logger.warning("聊天历史加载失败 | stream=%s | %s", self.stream_id, e)
            history = []
        for msg in history:
            self._append(ChatLine.from_history(msg))

        query = urlencode({"streamId": self.stream_id, "token": self._token})
        self._ws = await self._connect(f"{self._url}?{query}")
        self._connected = True
        self._receive_task = asyncio.create_task(
            self._receive_loop(), name=f"chat-session-{self.stream_id}",
        )
        logger.info("聊天会话已连接 | stream=%s | history=%d", self.stream_id, len(history))

    async def close(self) -> None:
        """停止接收并关闭连接（不会自动重连）。"""
        self._connected = False
        if self._receive_task is not None:
            self._receive_task.cancel()
            try:
                await self._receive_task
            except asyncio.CancelledError:
                pass
            self._receive_task = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None

    # ── 接收 ──────────────────────────────────────────────────────────

    async def _receive_loop(self) -> None:
        try:
            async for raw in self._ws:
                self._handle_raw(raw)
        except ConnectionClosed as e:
            logger.info("实时连接已断开 | stream=%s | code=%s", self.stream_id, e.rcvd.code if e.rcvd else None)
        finally:
            self._connected = False

    def _handle_raw(self, raw: str | bytes) -> None:
        try:
            event = parse_live_event(raw)
        except PayloadError:
            logger.warning("无法解析的推送 | stream=%s", self.stream_id)
            return
        if isinstance(event, ChatEvent):
            self._append(ChatLine.from_event(event))
        elif isinstance(event, ViewerCountEvent):
            self.viewer_count = event.data.count
        else:
            logger.debug("忽略推送 | type=%s", event.type)

    def _append(self, line: ChatLine) -> None:
        # 历史与实时推送可能包含同一条消息，按 message_id 去重
        if line.message_id:
            if line.message_id in self._seen_ids:
                return
            self._seen_ids.add(line.message_id)
        self.messages.append(line)

    # ── 发送 ──────────────────────────────────────────────────────────

    async def send_message(self, text: str, message_type: str = "regular") -> ChatLine | None:
        """发送一条消息。

        连接未打开，或消息未通过与服务端相同的权限和内容校验时，不推送也不持久化，
        返回 ``None``。
        """
        if not self._connected:
            return None
        try:
            checked = check_chat_input(text, self.viewer_name, message_type, self.permission)
        except AppError as e:
            logger.info("消息未发送 | stream=%s | %s", self.stream_id, e.msg)
            return None

        message_id = uuid.uuid4().hex
        envelope = ClientChatEnvelope(
            type="chat",
            data=ClientChatData(
                message=checked.message,
                viewer_name=checked.viewer_name,
                message_type=checked.message_type,
                message_id=message_id,
            ),
        )
        try:
            await self._ws.send(envelope.model_dump_json())
        except (ConnectionClosed, OSError) as e:
            self._connected = False
            logger.info("实时连接已断开，消息未发送 | stream=%s | %s", self.stream_id, e)
            return None

        spawn_background(
            self._cms.create_chat_message(
                ChatMessageCreate(
                    message_content=checked.message,
                    viewer_name=checked.viewer_name,
                    stream_id=self.stream_id,
                    message_type=checked.message_type,
                    message_id=message_id,
                ),
            ),
            name=f"chat-persist-{message_id[:8]}",
        )
        return ChatLine(
            message_id=message_id,
            message=checked.message,
            viewer_name=checked.viewer_name,
            message_type=checked.message_type,
        )
