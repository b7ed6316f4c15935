"""
streamhub.services.broadcast_hub
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

连接注册表 —— 按直播（房间）分组维护在线连接，并向房间广播事件。

并发模型:
  - 每个房间一把 ``asyncio.Lock``，同一房间的 attach / detach / broadcast 串行执行，
    不同房间互不影响。``asyncio.Lock`` 按 FIFO 唤醒，房间内广播顺序即调用顺序。
  - 广播先对房间做快照，再用 ``asyncio.gather`` 并发发送；单次发送带超时，
    失败或超时的连接被移出房间，不影响其他连接，随后向剩余连接推送新的在线人数。
  - 房间变空后立即删除其全部状态。
"""
from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from streamhub.core.logging import get_logger
from streamhub.schemas.events import LiveEvent, viewer_count_event
from streamhub.services.connection import Connection, ConnectionState

logger = get_logger(__name__)

# 服务端关闭连接（进程退出）
CLOSE_GOING_AWAY = 1001


class _Room:
    __slots__ = ("connections", "lock", "users")

    def __init__(self) -> None:
        self.connections: dict[str, Connection] = {}
        self.lock = asyncio.Lock()
        # 正在使用或等待该房间锁的操作数
        self.users = 0


class ConnectionRegistry:
    """直播间连接注册表（进程内唯一）。

    Attributes:
        send_timeout: 单次发送的超时时间（秒）。
    """

    def __init__(self, send_timeout: float = 5.0) -> None:
        self.send_timeout = send_timeout
        self._rooms: dict[str, _Room] = {}

    @asynccontextmanager
    async def _locked(self, stream_id: str) -> AsyncIterator[_Room]:
        room = self._rooms.get(stream_id)
        if room is None:
            room = self._rooms[stream_id] = _Room()
        room.users += 1
        try:
            async with room.lock:
                yield room
        finally:
            room.users -= 1
            if room.users == 0 and not room.connections and self._rooms.get(stream_id) is room:
                del self._rooms[stream_id]

    # ── 查询 ──────────────────────────────────────────────────────────

    def viewer_count(self, stream_id: str) -> int:
        room = self._rooms.get(stream_id)
        return len(room.connections) if room else 0

    def stream_ids(self) -> list[str]:
        return [stream_id for stream_id, room in self._rooms.items() if room.connections]

    def __contains__(self, stream_id: str) -> bool:
        return stream_id in self._rooms

    # ── 变更 ──────────────────────────────────────────────────────────

    async def attach(self, stream_id: str, connection: Connection) -> None:
        """加入房间并向房间内所有连接（包括新连接）推送在线人数。

        只接受 ``connecting`` 状态的连接；已打开或已关闭的连接被忽略。
        """
        async with self._locked(stream_id) as room:
            if connection.state is not ConnectionState.CONNECTING:
                logger.warning(
                    "忽略非新建连接 | stream=%s | conn=%s | state=%s",
                    stream_id, connection.connection_id, connection.state.value,
                )
                return
            connection.mark_open()
            room.connections[connection.connection_id] = connection
            logger.info(
                "观众进入 | stream=%s | conn=%s | online=%d",
                stream_id, connection.connection_id, len(room.connections),
            )
            await self._fan_out(stream_id, room, viewer_count_event(len(room.connections)))

    async def detach(self, stream_id: str, connection: Connection) -> None:
        """离开房间（幂等）。房间非空时推送新的在线人数。"""
        async with self._locked(stream_id) as room:
            removed = room.connections.pop(connection.connection_id, None)
            await connection.close()
            if removed is None:
                return
            logger.info(
                "观众离开 | stream=%s | conn=%s | online=%d",
                stream_id, connection.connection_id, len(room.connections),
            )
            if room.connections:
                await self._fan_out(stream_id, room, viewer_count_event(len(room.connections)))

    async def broadcast(self, stream_id: str, event: LiveEvent) -> int:
        """向房间内所有在线连接广播事件。

        Returns:
            成功送达的连接数。
        """
        if stream_id not in self._rooms:
            return 0
        async with self._locked(stream_id) as room:
            return await self._fan_out(stream_id, room, event)

    async def close_all(self) -> None:
        """关闭所有房间的所有连接（应用关闭时调用）。"""
        for stream_id in list(self._rooms):
            async with self._locked(stream_id) as room:
                connections = list(room.connections.values())
                room.connections.clear()
                await asyncio.gather(
                    *(conn.close(code=CLOSE_GOING_AWAY) for conn in connections),
                )
        logger.info("所有直播间连接已关闭")

    # ── 内部 ──────────────────────────────────────────────────────────

    async def _send(self, connection: Connection, payload: str) -> bool:
        try:
            await asyncio.wait_for(connection.send(payload), timeout=self.send_timeout)
        except asyncio.TimeoutError:
            logger.warning("发送超时，移除连接 | conn=%s", connection.connection_id)
            return False
        except Exception as e:
            logger.warning("发送失败，移除连接 | conn=%s | %s", connection.connection_id, e)
            return False
        return True

    async def _fan_out(self, stream_id: str, room: _Room, event: LiveEvent) -> int:
        """向房间快照发送事件；调用方必须持有房间锁。

        发送失败的连接被移除后，向剩余连接推送新的在线人数，直到某一轮全部成功。
        """
        delivered = 0
        first_round = True
        while True:
            targets = [conn for conn in room.connections.values() if conn.is_open]
            if not targets:
                return delivered
            payload = event.stamped().to_json()
            results = await asyncio.gather(*(self._send(conn, payload) for conn in targets))
            if first_round:
                delivered = sum(results)
                first_round = False

            failed = [conn for conn, ok in zip(targets, results) if not ok]
            if not failed:
                return delivered
            for conn in failed:
                room.connections.pop(conn.connection_id, None)
                await conn.close()
            logger.info("已移除失效连接 | stream=%s | removed=%d", stream_id, len(failed))
            event = viewer_count_event(len(room.connections))
