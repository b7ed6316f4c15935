"""
streamhub.services.stream_service
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

直播管理 —— 创建（Mux 直播输入 + CMS 记录）、列表、更新与状态广播。
"""
from __future__ import annotations

from streamhub.cms import CmsClient
from streamhub.core.errors import AppError, NotFound
from streamhub.core.logging import get_logger
from streamhub.core.tasks import spawn_background
from streamhub.schemas.cms import (
    StreamSession,
    StreamSessionCreate,
    StreamSessionUpdate,
    StreamStatus,
)
from streamhub.schemas.events import stream_status_event
from streamhub.schemas.requests import StreamCreateRequest, StreamCreatedData
from streamhub.services.broadcast_hub import ConnectionRegistry
from streamhub.video.mux import LiveInputOptions, MuxService

logger = get_logger(__name__)


class StreamService:
    """直播管理服务。

    Attributes:
        cms: CMS 客户端。
        mux: Mux 视频服务。
        hub: 直播间连接注册表，用于推送状态变更。
    """

    def __init__(self, cms: CmsClient, mux: MuxService, hub: ConnectionRegistry) -> None:
        self.cms = cms
        self.mux = mux
        self.hub = hub

    async def list_streams(self, status: StreamStatus | None = None) -> list[StreamSession]:
        sessions = await self.cms.list_stream_sessions()
        if status is not None:
            sessions = [s for s in sessions if s.status == status]
        return sessions

    async def get(self, stream_id: str) -> StreamSession:
        stream = await self.cms.get_stream_session(stream_id)
        if stream is None:
            raise NotFound("直播不存在")
        return stream

    async def create(self, request: StreamCreateRequest) -> StreamCreatedData:
        """先创建 Mux 直播输入，再写入 CMS。

        CMS 写入失败时删除刚创建的直播输入，避免留下孤立的推流端。
        """
        live_input = await self.mux.create_live_input(
            LiveInputOptions(passthrough=request.stream_title[:255]),
        )
        fields = StreamSessionCreate(
            **request.model_dump(),
            stream_key=live_input.ingest_key,
            mux_live_input_id=live_input.id,
            mux_playback_id=live_input.playback_id,
        )
        try:
            stream = await self.cms.create_stream_session(fields)
        except AppError:
            logger.warning("CMS 写入失败，回收 Mux 直播输入 | live_input=%s", live_input.id)
            spawn_background(self.mux.delete_live_input(live_input.id), name=f"mux-cleanup-{live_input.id}")
            raise

        playback_id = live_input.playback_id or ""
        return StreamCreatedData(
            stream=stream,
            rtmp_url=self.mux.build_rtmp_url(live_input.ingest_key),
            playback_url=self.mux.build_playback_url(playback_id) if playback_id else "",
            thumbnail_url=self.mux.build_thumbnail_url(playback_id) if playback_id else "",
        )

    async def update(self, stream_id: str, fields: StreamSessionUpdate) -> StreamSession:
        """部分更新；状态变化时向直播间广播 ``stream_status`` 事件。"""
        before = await self.get(stream_id)
        updated = await self.cms.update_stream_session(stream_id, fields)
        if fields.status is not None and fields.status != before.status:
            logger.info(
                "直播状态变更 | stream=%s | %s -> %s", stream_id, before.status, fields.status,
            )
            await self.hub.broadcast(stream_id, stream_status_event(stream_id, fields.status))
        return updated

    def viewer_count(self, stream_id: str) -> int:
        return self.hub.viewer_count(stream_id)
