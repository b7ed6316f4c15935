"""
tests.test_cosmic_cms
~~~~~~~~~~~~~~~~~~~~~

Cosmic REST 适配器的单元测试。

通过 ``httpx.MockTransport`` 拦截所有请求，验证请求参数、对象展开与错误映射。
"""
from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from streamhub.cms.cosmic import CosmicCms
from streamhub.core.config import Settings
from streamhub.core.errors import BackendUnavailable, ConfigurationError, NotFound
from streamhub.schemas.cms import (
    AccessLinkCreate,
    ChatMessageCreate,
    StreamSessionCreate,
    StreamSessionUpdate,
)

API = "https://cosmic.test/v3"
OBJECTS = "/v3/buckets/live-bucket/objects"

Handler = Callable[[httpx.Request], httpx.Response]


def cosmic_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "COSMIC_BUCKET_SLUG": "live-bucket",
        "COSMIC_READ_KEY": "read-key",
        "COSMIC_WRITE_KEY": "write-key",
        "COSMIC_API_URL": API,
    }
    values.update(overrides)
    return Settings(**values)


def make_cms(handler: Handler, **overrides: Any) -> CosmicCms:
    client = httpx.AsyncClient(base_url=API, transport=httpx.MockTransport(handler))
    return CosmicCms(cosmic_settings(**overrides), client=client)


def stream_obj(object_id: str = "s1", **metadata: Any) -> dict[str, Any]:
    meta = {"stream_title": "Launch", "status": "live", "chat_enabled": True, "description": ""}
    meta.update(metadata)
    return {
        "id": object_id,
        "type": "stream-sessions",
        "title": meta["stream_title"],
        "created_at": "2026-01-01T10:00:00.000Z",
        "metadata": meta,
    }


def link_obj(object_id: str = "l1", token: str = "tkn_" + "a" * 32, **metadata: Any) -> dict[str, Any]:
    meta = {
        "access_token": token,
        "stream_session": {"id": "s1", "title": "Launch"},
        "permissions": "chat",
        "expiration_date": "",
        "usage_count": 2,
        "active": True,
    }
    meta.update(metadata)
    return {"id": object_id, "type": "access-links", "title": "Access Link", "metadata": meta}


# ── 读取 ──────────────────────────────────────────────────────────────

class TestCosmicRead:
    """测试查询请求与对象展开。"""

    @pytest.mark.asyncio
    async def test_list_streams_sends_query(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"objects": [stream_obj("s1"), stream_obj("s2")]})

        cms = make_cms(handler)
        streams = await cms.list_stream_sessions()

        assert [s.id for s in streams] == ["s1", "s2"]
        assert streams[0].stream_title == "Launch"
        assert streams[0].created_at is not None and streams[0].created_at.tzinfo is not None

        request = seen[0]
        assert request.method == "GET"
        assert request.url.path == OBJECTS
        assert request.url.params["read_key"] == "read-key"
        assert json.loads(request.url.params["query"]) == {"type": "stream-sessions"}
        assert request.url.params["sort"] == "-created_at"
        assert request.url.params["depth"] == "1"

    @pytest.mark.asyncio
    async def test_empty_result_404_is_empty_list(self) -> None:
        cms = make_cms(lambda request: httpx.Response(404, json={"message": "No objects found"}))
        assert await cms.list_stream_sessions() == []
        assert await cms.get_access_link_by_token("tkn_" + "a" * 32) is None

    @pytest.mark.asyncio
    async def test_get_stream_missing(self) -> None:
        cms = make_cms(lambda request: httpx.Response(404))
        assert await cms.get_stream_session("nope") is None

    @pytest.mark.asyncio
    async def test_get_stream_of_other_type_is_none(self) -> None:
        obj = stream_obj("s1")
        obj["type"] = "chat-messages"
        cms = make_cms(lambda request: httpx.Response(200, json={"object": obj}))
        assert await cms.get_stream_session("s1") is None

    @pytest.mark.asyncio
    async def test_access_link_reference_is_flattened(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"objects": [link_obj()]})

        cms = make_cms(handler)
        link = await cms.get_access_link_by_token("tkn_" + "a" * 32)

        assert link is not None
        assert link.stream_id == "s1"
        assert link.permissions == "chat"
        assert link.usage_count == 2
        # 空字符串视为未设置
        assert link.expiration_date is None
        assert json.loads(seen[0].url.params["query"])["metadata.access_token"] == "tkn_" + "a" * 32
        assert seen[0].url.params["limit"] == "1"

    @pytest.mark.asyncio
    async def test_list_links_filters_by_stream(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"objects": [link_obj(stream_session="s9")]})

        cms = make_cms(handler)
        links = await cms.list_access_links("s9")

        assert links[0].stream_id == "s9"
        assert json.loads(seen[0].url.params["query"]) == {
            "type": "access-links",
            "metadata.stream_session": "s9",
        }

    @pytest.mark.asyncio
    async def test_chat_history_is_chronological(self) -> None:
        def message(object_id: str, ts: str) -> dict[str, Any]:
            return {
                "id": object_id,
                "title": "Chat",
                "metadata": {
                    "message_content": object_id,
                    "viewer_name": "alice",
                    "stream_session": "s1",
                    "timestamp": ts,
                    "message_type": "regular",
                    "message_id": "",
                },
            }

        # Cosmic 按创建时间倒序返回
        objects = [message("m3", "2026-01-01T10:03:00Z"), message("m1", "2026-01-01T10:01:00Z")]
        cms = make_cms(lambda request: httpx.Response(200, json={"objects": objects}))

        history = await cms.list_chat_messages("s1", limit=2)

        assert [m.message_content for m in history] == ["m1", "m3"]
        assert history[0].message_id is None


# ── 写入 ──────────────────────────────────────────────────────────────

class TestCosmicWrite:
    """测试写入请求与错误映射。"""

    @pytest.mark.asyncio
    async def test_create_stream_uses_write_key(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            body = json.loads(request.content)
            return httpx.Response(
                201,
                json={"object": {"id": "new", "title": body["title"], "metadata": body["metadata"]}},
            )

        cms = make_cms(handler)
        stream = await cms.create_stream_session(
            StreamSessionCreate(stream_title="Launch", stream_key="sk", mux_playback_id="pb"),
        )

        assert stream.id == "new"
        assert stream.mux_playback_id == "pb"
        assert stream.viewer_count == 0
        request = seen[0]
        assert request.method == "POST"
        assert request.headers["Authorization"] == "Bearer write-key"
        assert json.loads(request.content)["type"] == "stream-sessions"

    @pytest.mark.asyncio
    async def test_create_access_link_and_chat_message(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            return httpx.Response(
                201,
                json={"object": {"id": "obj", "title": body["title"], "metadata": body["metadata"]}},
            )

        cms = make_cms(handler)
        link = await cms.create_access_link(
            AccessLinkCreate(access_token="tkn_" + "c" * 32, stream_id="s1", permissions="moderator"),
        )
        message = await cms.create_chat_message(
            ChatMessageCreate(message_content="hi", viewer_name="alice", stream_id="s1", message_id="m1"),
        )

        assert link.stream_id == "s1"
        assert link.permissions == "moderator"
        assert link.active is True
        assert message.stream_id == "s1"
        assert message.message_id == "m1"

    @pytest.mark.asyncio
    async def test_update_missing_object_is_not_found(self) -> None:
        cms = make_cms(lambda request: httpx.Response(404))
        with pytest.raises(NotFound):
            await cms.update_stream_session("nope", StreamSessionUpdate(status="ended"))

    @pytest.mark.asyncio
    async def test_update_sends_only_set_fields(self) -> None:
        seen: list[dict[str, Any]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"object": stream_obj("s1", status="ended")})

        cms = make_cms(handler)
        stream = await cms.update_stream_session("s1", StreamSessionUpdate(status="ended"))

        assert stream.status == "ended"
        assert seen == [{"metadata": {"status": "ended"}}]

    @pytest.mark.asyncio
    async def test_increment_usage_reads_then_writes(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"object": link_obj(usage_count=2)})

        cms = make_cms(handler)
        await cms.increment_access_link_usage("l1")

        assert [r.method for r in seen] == ["GET", "PATCH"]
        patch = json.loads(seen[1].content)["metadata"]
        assert patch["usage_count"] == 3
        assert patch["last_accessed"]


# ── 错误 ──────────────────────────────────────────────────────────────

class TestCosmicErrors:
    """测试后端错误与缺失配置。"""

    @pytest.mark.asyncio
    async def test_server_error_is_backend_unavailable(self) -> None:
        cms = make_cms(lambda request: httpx.Response(500))
        with pytest.raises(BackendUnavailable):
            await cms.list_stream_sessions()

    @pytest.mark.asyncio
    async def test_transport_error_is_backend_unavailable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        cms = make_cms(handler)
        with pytest.raises(BackendUnavailable):
            await cms.get_stream_session("s1")

    @pytest.mark.asyncio
    async def test_missing_bucket_is_configuration_error(self) -> None:
        cms = make_cms(lambda request: httpx.Response(200), COSMIC_BUCKET_SLUG=None)
        with pytest.raises(ConfigurationError):
            await cms.list_stream_sessions()

    @pytest.mark.asyncio
    async def test_missing_write_key_is_configuration_error(self) -> None:
        cms = make_cms(lambda request: httpx.Response(200), COSMIC_WRITE_KEY=None)
        with pytest.raises(ConfigurationError):
            await cms.create_chat_message(
                ChatMessageCreate(message_content="hi", viewer_name="alice", stream_id="s1"),
            )

    @pytest.mark.asyncio
    async def test_aclose_closes_client(self) -> None:
        cms = make_cms(lambda request: httpx.Response(200))
        await cms.aclose()
        assert cms._client.is_closed
