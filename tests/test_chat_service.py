"""
tests.test_chat_service
~~~~~~~~~~~~~~~~~~~~~~~

聊天业务服务层单元测试。

验证：
- check_chat_input 的权限、昵称、消息类型与内容校验
- ChatService.post 的 持久化 → 广播 流程
- ChatService.relay 只广播、不持久化

CMS 用内存实现，WebSocket 用 FakeSocket 替代。
"""
from __future__ import annotations

import pytest

from streamhub.core.errors import BackendUnavailable, NotFound, Unauthorized, ValidationError
from streamhub.core.security import check_chat_input
from streamhub.services.broadcast_hub import ConnectionRegistry
from streamhub.services.chat_service import ChatService
from streamhub.services.connection import Connection
from tests.conftest import FakeCms, FakeSocket


async def join(hub: ConnectionRegistry, stream_id: str = "stream-1") -> FakeSocket:
    socket = FakeSocket()
    await hub.attach(stream_id, Connection(socket, stream_id, "chat"))
    return socket


# ── 输入校验 ──────────────────────────────────────────────────────────

class TestCheckChatInput:
    """测试聊天输入的校验与清洗。"""

    def test_clean_message(self) -> None:
        checked = check_chat_input("  <b>hello</b> ", " alice ", "regular", "chat")
        assert checked.message == "hello"
        assert checked.viewer_name == "alice"
        assert checked.message_type == "regular"

    def test_view_only_cannot_chat(self) -> None:
        with pytest.raises(Unauthorized):
            check_chat_input("hello", "alice", "regular", "view-only")

    def test_bad_viewer_name(self) -> None:
        with pytest.raises(ValidationError):
            check_chat_input("hello", "a", "regular", "chat")

    @pytest.mark.parametrize("message_type", ["shout", "system"])
    def test_rejected_message_types(self, message_type: str) -> None:
        """``system`` 只由服务端产生，客户端不可发送。"""
        with pytest.raises(ValidationError):
            check_chat_input("hello", "alice", message_type, "moderator")

    def test_moderator_type_requires_moderator(self) -> None:
        with pytest.raises(Unauthorized):
            check_chat_input("hello", "alice", "moderator", "chat")
        assert check_chat_input("hello", "alice", "moderator", "moderator").message_type == "moderator"

    @pytest.mark.parametrize("message", ["", "    ", "<p></p>"])
    def test_empty_after_sanitize(self, message: str) -> None:
        with pytest.raises(ValidationError):
            check_chat_input(message, "alice", "regular", "chat")


# ── HTTP 发送 ─────────────────────────────────────────────────────────

class TestChatServicePost:
    """测试 HTTP 发送路径（持久化 + 广播）。"""

    @pytest.mark.asyncio
    async def test_post_persists_then_broadcasts(self, fake_cms: FakeCms) -> None:
        hub = ConnectionRegistry()
        socket = await join(hub)
        service = ChatService(fake_cms, hub)

        saved = await service.post(
            "stream-1", "hello <i>all</i>", "alice",
            permission="chat", message_id="m-1", viewer_ip="hashed",
        )

        assert saved.message_content == "hello all"
        assert saved.message_id == "m-1"
        assert saved.viewer_ip == "hashed"
        assert [m.id for m in fake_cms.messages] == [saved.id]

        chats = socket.events_of("chat")
        assert len(chats) == 1
        assert chats[0]["data"]["message"] == "hello all"
        assert chats[0]["data"]["message_id"] == "m-1"

    @pytest.mark.asyncio
    async def test_post_without_listeners(self, fake_cms: FakeCms) -> None:
        service = ChatService(fake_cms, ConnectionRegistry())
        saved = await service.post("stream-1", "hello", "alice", permission="chat")
        assert saved.stream_id == "stream-1"

    @pytest.mark.asyncio
    async def test_unknown_stream(self, fake_cms: FakeCms) -> None:
        service = ChatService(fake_cms, ConnectionRegistry())
        with pytest.raises(NotFound):
            await service.post("missing", "hello", "alice", permission="chat")
        assert fake_cms.messages == []

    @pytest.mark.asyncio
    async def test_chat_disabled(self, fake_cms: FakeCms) -> None:
        fake_cms.add_stream("quiet", chat_enabled=False)
        service = ChatService(fake_cms, ConnectionRegistry())
        with pytest.raises(ValidationError):
            await service.post("quiet", "hello", "alice", permission="chat")

    @pytest.mark.asyncio
    async def test_invalid_input_touches_nothing(self, fake_cms: FakeCms) -> None:
        hub = ConnectionRegistry()
        socket = await join(hub)
        service = ChatService(fake_cms, hub)

        with pytest.raises(ValidationError):
            await service.post("stream-1", "   ", "alice", permission="chat")

        assert fake_cms.messages == []
        assert socket.events_of("chat") == []

    @pytest.mark.asyncio
    async def test_persist_failure_skips_broadcast(self, fake_cms: FakeCms) -> None:
        hub = ConnectionRegistry()
        socket = await join(hub)
        service = ChatService(fake_cms, hub)
        fake_cms.fail_with = BackendUnavailable()

        with pytest.raises(BackendUnavailable):
            await service.post("stream-1", "hello", "alice", permission="chat")
        assert socket.events_of("chat") == []


# ── 历史 / 实时转发 ───────────────────────────────────────────────────

class TestChatServiceHistoryAndRelay:
    """测试历史查询与实时连接转发。"""

    @pytest.mark.asyncio
    async def test_history_is_chronological_and_limited(self, fake_cms: FakeCms) -> None:
        service = ChatService(fake_cms, ConnectionRegistry(), history_limit=3)
        for i in range(5):
            await service.post("stream-1", f"msg {i}", "alice", permission="chat")

        history = await service.history("stream-1")

        assert [m.message_content for m in history] == ["msg 2", "msg 3", "msg 4"]
        assert len(await service.history("stream-1", limit=10)) == 5

    @pytest.mark.asyncio
    async def test_relay_broadcasts_without_persisting(self, fake_cms: FakeCms) -> None:
        hub = ConnectionRegistry()
        first, second = await join(hub), await join(hub)
        service = ChatService(fake_cms, hub)

        event = await service.relay(
            "stream-1", "hi", "bob", "moderator", permission="moderator", message_id="m-9",
        )

        assert event.data.message_type == "moderator"
        assert fake_cms.messages == []
        for socket in (first, second):
            assert [e["data"]["message_id"] for e in socket.events_of("chat")] == ["m-9"]

    @pytest.mark.asyncio
    async def test_relay_rejects_view_only(self, fake_cms: FakeCms) -> None:
        hub = ConnectionRegistry()
        socket = await join(hub)
        service = ChatService(fake_cms, hub)

        with pytest.raises(Unauthorized):
            await service.relay("stream-1", "hi", "bob", "regular", permission="view-only")
        assert socket.events_of("chat") == []

    @pytest.mark.asyncio
    async def test_relay_respects_chat_disabled(self, fake_cms: FakeCms) -> None:
        fake_cms.add_stream("quiet", chat_enabled=False)
        hub = ConnectionRegistry()
        socket = await join(hub, "quiet")
        service = ChatService(fake_cms, hub)

        with pytest.raises(ValidationError):
            await service.relay("quiet", "hi", "bob", "regular", permission="chat")
        assert socket.events_of("chat") == []

    @pytest.mark.asyncio
    async def test_relay_to_missing_stream(self, fake_cms: FakeCms) -> None:
        service = ChatService(fake_cms, ConnectionRegistry())
        with pytest.raises(NotFound):
            await service.relay("missing", "hi", "bob", "regular", permission="chat")


class TestChatServicePermission:
    """HTTP 发送同样受令牌权限约束。"""

    @pytest.mark.asyncio
    async def test_view_only_post_touches_nothing(self, fake_cms: FakeCms) -> None:
        hub = ConnectionRegistry()
        socket = await join(hub)
        service = ChatService(fake_cms, hub)

        with pytest.raises(Unauthorized):
            await service.post("stream-1", "hello", "alice", permission="view-only")

        assert fake_cms.messages == []
        assert socket.events_of("chat") == []
