"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 用内存 CMS 与假 WebSocket 替换所有外部依赖，
使单元测试可在无网络、无数据库的环境下快速运行。
"""
from __future__ import annotations

import asyncio
import json
import os
import uuid
from datetime import datetime, timedelta
from typing import Any

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")  # 激活 .env.test 配置

from streamhub.core.config import Settings  # noqa: E402
from streamhub.core.errors import NotFound  # noqa: E402
from streamhub.schemas.cms import (  # noqa: E402
    AccessLink,
    AccessLinkCreate,
    ChatMessage,
    ChatMessageCreate,
    StreamSession,
    StreamSessionCreate,
    StreamSessionUpdate,
    StreamSettings,
    StreamSettingsUpdate,
    utcnow,
)

ADMIN_TOKEN = "admin-secret"
VALID_TOKEN = "tkn_" + "a" * 32
OTHER_TOKEN = "tkn_" + "b" * 32


# ── 内存 CMS ─────────────────────────────────────────────────────────

class FakeCms:
    """``CmsClient`` 的内存实现。

    ``fail_with`` 不为空时，所有操作抛出该异常（模拟后端不可用）。
    """

    def __init__(self) -> None:
        self.streams: dict[str, StreamSession] = {}
        self.links: dict[str, AccessLink] = {}
        self.messages: list[ChatMessage] = []
        self.stream_settings: StreamSettings | None = None
        self.usage_increments: list[str] = []
        self.fail_with: Exception | None = None
        self.closed = False

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    # 测试数据构造

    def add_stream(self, stream_id: str = "stream-1", **fields: Any) -> StreamSession:
        fields.setdefault("stream_title", f"Stream {stream_id}")
        fields.setdefault("created_at", utcnow())
        stream = StreamSession(id=stream_id, **fields)
        self.streams[stream_id] = stream
        return stream

    def add_link(
        self,
        token: str = VALID_TOKEN,
        stream_id: str = "stream-1",
        permissions: str = "chat",
        **fields: Any,
    ) -> AccessLink:
        link = AccessLink(
            id=fields.pop("id", f"link-{uuid.uuid4().hex[:6]}"),
            access_token=token,
            stream_id=stream_id,
            permissions=permissions,
            created_at=fields.pop("created_at", utcnow()),
            **fields,
        )
        self.links[link.id] = link
        return link

    # CmsClient

    async def list_stream_sessions(self) -> list[StreamSession]:
        self._check()
        return list(reversed(self.streams.values()))

    async def get_stream_session(self, stream_id: str) -> StreamSession | None:
        self._check()
        return self.streams.get(stream_id)

    async def create_stream_session(self, fields: StreamSessionCreate) -> StreamSession:
        self._check()
        return self.add_stream(f"stream-{uuid.uuid4().hex[:6]}", **fields.model_dump())

    async def update_stream_session(
        self, stream_id: str, fields: StreamSessionUpdate,
    ) -> StreamSession:
        self._check()
        if stream_id not in self.streams:
            raise NotFound()
        updated = self.streams[stream_id].model_copy(update=fields.model_dump(exclude_unset=True))
        self.streams[stream_id] = updated
        return updated

    async def list_access_links(self, stream_id: str | None = None) -> list[AccessLink]:
        self._check()
        links = [l for l in self.links.values() if stream_id is None or l.stream_id == stream_id]
        return list(reversed(links))

    async def get_access_link_by_token(self, token: str) -> AccessLink | None:
        self._check()
        return next((l for l in self.links.values() if l.access_token == token), None)

    async def create_access_link(self, fields: AccessLinkCreate) -> AccessLink:
        self._check()
        return self.add_link(
            fields.access_token,
            fields.stream_id,
            fields.permissions,
            expiration_date=fields.expiration_date,
            generated_link=fields.generated_link,
        )

    async def increment_access_link_usage(self, link_id: str) -> None:
        self._check()
        self.usage_increments.append(link_id)
        link = self.links[link_id]
        self.links[link_id] = link.model_copy(
            update={"usage_count": link.usage_count + 1, "last_accessed": utcnow()},
        )

    async def get_stream_settings(self) -> StreamSettings | None:
        self._check()
        return self.stream_settings

    async def update_stream_settings(
        self, settings_id: str, fields: StreamSettingsUpdate,
    ) -> StreamSettings:
        self._check()
        if self.stream_settings is None or self.stream_settings.id != settings_id:
            raise NotFound()
        self.stream_settings = self.stream_settings.model_copy(
            update=fields.model_dump(exclude_unset=True),
        )
        return self.stream_settings

    async def list_chat_messages(self, stream_id: str, limit: int = 50) -> list[ChatMessage]:
        self._check()
        matching = [m for m in self.messages if m.stream_id == stream_id]
        matching.sort(key=lambda m: m.timestamp)
        return matching[-limit:]

    async def create_chat_message(self, fields: ChatMessageCreate) -> ChatMessage:
        self._check()
        message = ChatMessage(id=f"msg-{len(self.messages) + 1}", **fields.model_dump())
        self.messages.append(message)
        return message

    async def aclose(self) -> None:
        self.closed = True


# ── 假 WebSocket ─────────────────────────────────────────────────────

class FakeSocket:
    """满足 ``SocketLike`` 协议的假连接，记录所有发送内容。

    Args:
        fail: 为 True 时每次发送都抛出异常。
        delay: 每次发送前等待的秒数（模拟卡住的客户端）。
    """

    def __init__(self, fail: bool = False, delay: float = 0.0) -> None:
        self.fail = fail
        self.delay = delay
        self.sent: list[str] = []
        self.close_code: int | None = None

    async def send_text(self, data: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("socket gone")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.close_code = code

    def events(self) -> list[dict[str, Any]]:
        return [json.loads(s) for s in self.sent]

    def events_of(self, event_type: str) -> list[dict[str, Any]]:
        return [e for e in self.events() if e["type"] == event_type]


# ── Fixtures ─────────────────────────────────────────────────────────

@pytest.fixture()
def test_settings() -> Settings:
    return Settings(
        ENVIRONMENT="test",
        ADMIN_ACCESS_ENABLED=True,
        ADMIN_TOKEN=ADMIN_TOKEN,
        PUBLIC_BASE_URL="https://stream.example.com",
        MUX_TOKEN_ID="mux-id",
        MUX_TOKEN_SECRET="mux-secret",
        WS_SEND_TIMEOUT=0.2,
    )


@pytest.fixture()
def fake_cms() -> FakeCms:
    cms = FakeCms()
    cms.add_stream("stream-1", stream_title="Launch Party", status="live")
    return cms


def future(days: int = 1) -> datetime:
    return utcnow() + timedelta(days=days)


def past(days: int = 1) -> datetime:
    return utcnow() - timedelta(days=days)
