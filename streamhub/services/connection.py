"""
streamhub.services.connection
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

单个观众的实时连接 —— 包装 WebSocket，记录所属直播与权限。
"""
from __future__ import annotations

import enum
import uuid
from typing import Protocol

from streamhub.core.logging import get_logger
from streamhub.schemas.cms import PermissionLevel
from streamhub.schemas.events import LiveEvent

logger = get_logger(__name__)


class SocketLike(Protocol):
    """连接所需的最小 WebSocket 接口（``fastapi.WebSocket`` 满足该协议）。"""

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


class ConnectionState(str, enum.Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class Connection:
    """一个已通过令牌校验的观众连接。

    状态只能前进：``connecting → open → closed``，``closed`` 为终态。

    Attributes:
        connection_id: 连接唯一标识。
        stream_id: 所属直播 ID。
        permission: 该连接令牌的权限级别。
        client_id: 用于限流的客户端标识（哈希后的地址）。
    """

    def __init__(
        self,
        websocket: SocketLike,
        stream_id: str,
        permission: PermissionLevel = "view-only",
        client_id: str = "unknown",
    ) -> None:
        self.connection_id = f"conn-{uuid.uuid4().hex[:12]}"
        self.stream_id = stream_id
        self.permission = permission
        self.client_id = client_id
        self.state = ConnectionState.CONNECTING
        self._websocket = websocket

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    def mark_open(self) -> None:
        if self.state is ConnectionState.CONNECTING:
            self.state = ConnectionState.OPEN

    async def send(self, payload: str) -> None:
        """发送一段文本；非 open 状态调用会抛出 ``RuntimeError``。"""
        if not self.is_open:
            raise RuntimeError(f"连接未打开: {self.connection_id} ({self.state.value})")
        await self._websocket.send_text(payload)

    async def send_event(self, event: LiveEvent) -> None:
        await self.send(event.stamped().to_json())

    async def close(self, code: int = 1000, reason: str = "") -> None:
        """关闭连接（幂等）。底层 socket 已断开时忽略关闭错误。"""
        if self.state is ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSED
        try:
            await self._websocket.close(code=code, reason=reason)
        except Exception as e:
            logger.debug("关闭连接时出错（忽略） | conn=%s | %s", self.connection_id, e)

    def __repr__(self) -> str:
        return f"<Connection {self.connection_id} stream={self.stream_id} {self.state.value}>"
