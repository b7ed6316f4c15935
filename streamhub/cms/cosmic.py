"""
streamhub.cms.cosmic
~~~~~~~~~~~~~~~~~~~~

Cosmic 对象存储适配器 —— 通过 Cosmic v3 REST API 存取直播数据。

每种领域对象对应一个 Cosmic object type，业务字段存放在 ``metadata`` 中:

  - ``stream-sessions``  直播
  - ``access-links``     访问链接（``metadata.stream_session`` 引用直播）
  - ``chat-messages``    聊天消息
  - ``stream-settings``  直播设置（单例）

Cosmic 在查询无结果时返回 404，这里统一映射为空列表 / ``None``。
"""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any

import httpx

from streamhub.core.config import Settings
from streamhub.core.errors import BackendUnavailable, ConfigurationError, NotFound
from streamhub.core.logging import get_logger
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
    utcnow,
)

logger = get_logger(__name__)

_STREAM_TYPE = "stream-sessions"
_ACCESS_LINK_TYPE = "access-links"
_CHAT_TYPE = "chat-messages"
_SETTINGS_TYPE = "stream-settings"

_LIST_PROPS = "id,title,slug,metadata,created_at"


class _CosmicMissing(Exception):
    """Cosmic 返回 404。"""


def _ref_id(value: Any) -> str | None:
    """``depth=1`` 时关联字段是完整对象，否则是 ID 字符串。"""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def _flatten(obj: dict[str, Any]) -> dict[str, Any]:
    """把 Cosmic 对象展开为扁平字典；空字符串视为未设置。"""
    flat = {k: v for k, v in (obj.get("metadata") or {}).items() if v not in ("", None)}
    flat["id"] = obj["id"]
    flat["title"] = obj.get("title", "")
    if obj.get("created_at"):
        flat["created_at"] = obj["created_at"]
    if "stream_session" in flat:
        flat["stream_id"] = _ref_id(flat.pop("stream_session"))
    return flat


def _jsonable(fields: dict[str, Any]) -> dict[str, Any]:
    return {k: v.isoformat() if isinstance(v, datetime) else v for k, v in fields.items()}


class CosmicCms:
    """Cosmic REST 客户端。

    Attributes:
        bucket_slug: Bucket 标识。
    """

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self.bucket_slug = settings.COSMIC_BUCKET_SLUG
        self._read_key = settings.COSMIC_READ_KEY
        self._write_key = settings.COSMIC_WRITE_KEY
        self._client = client or httpx.AsyncClient(
            base_url=settings.COSMIC_API_URL,
            timeout=settings.CMS_TIMEOUT_SECONDS,
        )

    # ── 底层请求 ──────────────────────────────────────────────────────

    def _objects_path(self, object_id: str | None = None) -> str:
        if not self.bucket_slug:
            raise ConfigurationError("CMS 未配置（COSMIC_BUCKET_SLUG）")
        path = f"/buckets/{self.bucket_slug}/objects"
        return f"{path}/{object_id}" if object_id else path

    def _read_params(self, **params: Any) -> dict[str, Any]:
        if not self._read_key:
            raise ConfigurationError("CMS 未配置（COSMIC_READ_KEY）")
        return {"read_key": self._read_key, **{k: v for k, v in params.items() if v is not None}}

    def _write_headers(self) -> dict[str, str]:
        if not self._write_key:
            raise ConfigurationError("CMS 未配置（COSMIC_WRITE_KEY）")
        return {"Authorization": f"Bearer {self._write_key}"}

    async def _request(self, method: str, path: str, action: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error("Cosmic 请求失败 | %s | %s", action, e)
            raise BackendUnavailable(f"{action}失败") from e
        if response.status_code == 404:
            raise _CosmicMissing()
        if response.is_error:
            logger.error("Cosmic 返回错误 | %s | status=%d", action, response.status_code)
            raise BackendUnavailable(f"{action}失败")
        return response.json()

    async def _find(
        self,
        query: dict[str, Any],
        action: str,
        *,
        limit: int | None = None,
        sort: str | None = "-created_at",
    ) -> list[dict[str, Any]]:
        params = self._read_params(
            query=json.dumps(query),
            props=_LIST_PROPS,
            depth=1,
            limit=limit,
            sort=sort,
        )
        try:
            body = await self._request("GET", self._objects_path(), action, params=params)
        except _CosmicMissing:
            return []
        return body.get("objects") or []

    async def _find_by_id(self, object_id: str, action: str) -> dict[str, Any] | None:
        params = self._read_params(props=_LIST_PROPS, depth=1)
        try:
            body = await self._request("GET", self._objects_path(object_id), action, params=params)
        except _CosmicMissing:
            return None
        return body.get("object")

    async def _insert(self, type_: str, title: str, metadata: dict[str, Any], action: str) -> dict[str, Any]:
        payload = {"type": type_, "title": title, "metadata": _jsonable(metadata)}
        try:
            body = await self._request(
                "POST", self._objects_path(), action, json=payload, headers=self._write_headers(),
            )
        except _CosmicMissing as e:
            raise BackendUnavailable(f"{action}失败") from e
        return body["object"]

    async def _update(self, object_id: str, metadata: dict[str, Any], action: str) -> dict[str, Any]:
        payload = {"metadata": _jsonable(metadata)}
        try:
            body = await self._request(
                "PATCH",
                self._objects_path(object_id),
                action,
                json=payload,
                headers=self._write_headers(),
            )
        except _CosmicMissing as e:
            raise NotFound(f"{action}失败：对象不存在") from e
        return body["object"]

    # ── 直播 ──────────────────────────────────────────────────────────

    async def list_stream_sessions(self) -> list[StreamSession]:
        objects = await self._find({"type": _STREAM_TYPE}, "获取直播列表")
        return [StreamSession.model_validate(_flatten(obj)) for obj in objects]

    async def get_stream_session(self, stream_id: str) -> StreamSession | None:
        obj = await self._find_by_id(stream_id, "获取直播")
        if obj is None or obj.get("type", _STREAM_TYPE) != _STREAM_TYPE:
            return None
        return StreamSession.model_validate(_flatten(obj))

    async def create_stream_session(self, fields: StreamSessionCreate) -> StreamSession:
        metadata = fields.model_dump()
        metadata.update(viewer_count=0, recording_url=None)
        obj = await self._insert(_STREAM_TYPE, fields.stream_title, metadata, "创建直播")
        logger.info("直播已创建 | id=%s", obj["id"])
        return StreamSession.model_validate(_flatten(obj))

    async def update_stream_session(
        self, stream_id: str, fields: StreamSessionUpdate,
    ) -> StreamSession:
        obj = await self._update(stream_id, fields.model_dump(exclude_unset=True), "更新直播")
        return StreamSession.model_validate(_flatten(obj))

    # ── 访问链接 ──────────────────────────────────────────────────────

    async def list_access_links(self, stream_id: str | None = None) -> list[AccessLink]:
        query: dict[str, Any] = {"type": _ACCESS_LINK_TYPE}
        if stream_id:
            query["metadata.stream_session"] = stream_id
        objects = await self._find(query, "获取访问链接列表")
        return [AccessLink.model_validate(_flatten(obj)) for obj in objects]

    async def get_access_link_by_token(self, token: str) -> AccessLink | None:
        objects = await self._find(
            {"type": _ACCESS_LINK_TYPE, "metadata.access_token": token},
            "获取访问链接",
            limit=1,
        )
        if not objects:
            return None
        return AccessLink.model_validate(_flatten(objects[0]))

    async def create_access_link(self, fields: AccessLinkCreate) -> AccessLink:
        metadata = {
            "access_token": fields.access_token,
            "stream_session": fields.stream_id,
            "permissions": fields.permissions,
            "expiration_date": fields.expiration_date or "",
            "generated_link": fields.generated_link or "",
            "usage_count": 0,
            "last_accessed": None,
            "active": True,
        }
        title = f"Access Link - {fields.access_token[:8]}..."
        obj = await self._insert(_ACCESS_LINK_TYPE, title, metadata, "创建访问链接")
        return AccessLink.model_validate(_flatten(obj))

    async def increment_access_link_usage(self, link_id: str) -> None:
        # Cosmic 不支持原子自增，先读后写；仅作统计用途
        obj = await self._find_by_id(link_id, "获取访问链接")
        if obj is None:
            return
        current = int((obj.get("metadata") or {}).get("usage_count") or 0)
        await self._update(
            link_id,
            {"usage_count": current + 1, "last_accessed": utcnow()},
            "更新访问链接使用次数",
        )

    # ── 直播设置 ──────────────────────────────────────────────────────

    async def get_stream_settings(self) -> StreamSettings | None:
        objects = await self._find({"type": _SETTINGS_TYPE}, "获取直播设置", limit=1, sort=None)
        if not objects:
            return None
        return StreamSettings.model_validate(_flatten(objects[0]))

    async def update_stream_settings(
        self, settings_id: str, fields: StreamSettingsUpdate,
    ) -> StreamSettings:
        obj = await self._update(settings_id, fields.model_dump(exclude_unset=True), "更新直播设置")
        return StreamSettings.model_validate(_flatten(obj))

    # ── 聊天消息 ──────────────────────────────────────────────────────

    async def list_chat_messages(self, stream_id: str, limit: int = 50) -> list[ChatMessage]:
        # 先按时间倒序取最近 N 条，再反转为正序
        objects = await self._find(
            {"type": _CHAT_TYPE, "metadata.stream_session": stream_id},
            "获取聊天消息",
            limit=limit,
        )
        messages = [ChatMessage.model_validate(_flatten(obj)) for obj in objects]
        messages.sort(key=lambda m: m.timestamp)
        return messages

    async def create_chat_message(self, fields: ChatMessageCreate) -> ChatMessage:
        metadata = {
            "message_content": fields.message_content,
            "viewer_name": fields.viewer_name,
            "stream_session": fields.stream_id,
            "timestamp": fields.timestamp,
            "message_type": fields.message_type,
            "message_id": fields.message_id or "",
            "viewer_ip": fields.viewer_ip or "",
        }
        title = f"Chat: {fields.viewer_name} - {fields.message_content[:30]}..."
        obj = await self._insert(_CHAT_TYPE, title, metadata, "保存聊天消息")
        return ChatMessage.model_validate(_flatten(obj))

    async def aclose(self) -> None:
        await self._client.aclose()
