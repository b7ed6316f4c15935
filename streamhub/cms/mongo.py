"""
streamhub.cms.mongo
~~~~~~~~~~~~~~~~~~~

MongoDB 存储适配器 —— 自托管部署时替代 Cosmic。

每种领域对象一个集合，文档为扁平结构，使用字符串 ``id``（uuid4 hex）
作为对外标识，``_id`` 不对外暴露。集合在首次操作时自动建立索引。
"""
from __future__ import annotations

import uuid
from typing import Any, Awaitable, Callable

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from streamhub.core.config import Settings
from streamhub.core.errors import BackendUnavailable, NotFound
from streamhub.core.logging import get_logger
from streamhub.db import close_mongo, connect_mongo
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

_STREAMS = "stream_sessions"
_ACCESS_LINKS = "access_links"
_CHAT_MESSAGES = "chat_messages"
_SETTINGS = "stream_settings"

_NO_OBJECT_ID = {"_id": 0}


def _new_id() -> str:
    return uuid.uuid4().hex


class MongoCms:
    """基于 motor 的 CMS 实现。

    Attributes:
        db: MongoDB 数据库实例。
    """

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.db = db
        self._indexes_created = False

    @classmethod
    async def connect(cls, settings: Settings) -> "MongoCms":
        return cls(await connect_mongo(settings))

    async def _ensure_indexes(self) -> None:
        """确保索引已创建（惰性，首次操作时执行一次）。"""
        if self._indexes_created:
            return
        await self.db[_ACCESS_LINKS].create_index("access_token", name="idx_token", unique=True)
        await self.db[_ACCESS_LINKS].create_index(
            [("stream_id", 1), ("created_at", -1)], name="idx_stream_time",
        )
        await self.db[_CHAT_MESSAGES].create_index(
            [("stream_id", 1), ("timestamp", -1)], name="idx_stream_time",
        )
        for name in (_STREAMS, _ACCESS_LINKS, _CHAT_MESSAGES, _SETTINGS):
            await self.db[name].create_index("id", name="idx_id", unique=True)
        self._indexes_created = True
        logger.debug("CMS 集合索引已就绪")

    async def _run(self, action: str, op: Callable[[], Awaitable[Any]]) -> Any:
        """执行一次 Mongo 操作，驱动异常统一转换为 ``BackendUnavailable``。"""
        try:
            await self._ensure_indexes()
            return await op()
        except PyMongoError as e:
            logger.error("MongoDB 操作失败 | %s | %s", action, e)
            raise BackendUnavailable(f"{action}失败") from e

    async def _find_many(
        self, collection: str, query: dict[str, Any], sort: str, action: str, limit: int = 0,
    ) -> list[dict[str, Any]]:
        cursor = self.db[collection].find(query, _NO_OBJECT_ID).sort(sort, -1)
        if limit:
            cursor = cursor.limit(limit)
        return await self._run(action, lambda: cursor.to_list(length=limit or None))

    async def _insert(self, collection: str, doc: dict[str, Any], action: str) -> dict[str, Any]:
        doc = {"id": _new_id(), "created_at": utcnow(), **doc}
        await self._run(action, lambda: self.db[collection].insert_one(doc))
        doc.pop("_id", None)
        return doc

    async def _update(
        self, collection: str, object_id: str, fields: dict[str, Any], action: str,
    ) -> dict[str, Any]:
        doc = await self._run(
            action,
            lambda: self.db[collection].find_one_and_update(
                {"id": object_id},
                {"$set": fields},
                projection=_NO_OBJECT_ID,
                return_document=ReturnDocument.AFTER,
            ),
        )
        if doc is None:
            raise NotFound(f"{action}失败：对象不存在")
        return doc

    # ── 直播 ──────────────────────────────────────────────────────────

    async def list_stream_sessions(self) -> list[StreamSession]:
        docs = await self._find_many(_STREAMS, {}, "created_at", "获取直播列表")
        return [StreamSession.model_validate(doc) for doc in docs]

    async def get_stream_session(self, stream_id: str) -> StreamSession | None:
        doc = await self._run(
            "获取直播", lambda: self.db[_STREAMS].find_one({"id": stream_id}, _NO_OBJECT_ID),
        )
        return StreamSession.model_validate(doc) if doc else None

    async def create_stream_session(self, fields: StreamSessionCreate) -> StreamSession:
        doc = fields.model_dump()
        doc.update(title=fields.stream_title, viewer_count=0)
        doc = await self._insert(_STREAMS, doc, "创建直播")
        logger.info("直播已创建 | id=%s", doc["id"])
        return StreamSession.model_validate(doc)

    async def update_stream_session(
        self, stream_id: str, fields: StreamSessionUpdate,
    ) -> StreamSession:
        doc = await self._update(
            _STREAMS, stream_id, fields.model_dump(exclude_unset=True), "更新直播",
        )
        return StreamSession.model_validate(doc)

    # ── 访问链接 ──────────────────────────────────────────────────────

    async def list_access_links(self, stream_id: str | None = None) -> list[AccessLink]:
        query = {"stream_id": stream_id} if stream_id else {}
        docs = await self._find_many(_ACCESS_LINKS, query, "created_at", "获取访问链接列表")
        return [AccessLink.model_validate(doc) for doc in docs]

    async def get_access_link_by_token(self, token: str) -> AccessLink | None:
        doc = await self._run(
            "获取访问链接",
            lambda: self.db[_ACCESS_LINKS].find_one({"access_token": token}, _NO_OBJECT_ID),
        )
        return AccessLink.model_validate(doc) if doc else None

    async def create_access_link(self, fields: AccessLinkCreate) -> AccessLink:
        doc = fields.model_dump()
        doc.update(usage_count=0, last_accessed=None, active=True)
        doc = await self._insert(_ACCESS_LINKS, doc, "创建访问链接")
        return AccessLink.model_validate(doc)

    async def increment_access_link_usage(self, link_id: str) -> None:
        await self._run(
            "更新访问链接使用次数",
            lambda: self.db[_ACCESS_LINKS].update_one(
                {"id": link_id},
                {"$inc": {"usage_count": 1}, "$set": {"last_accessed": utcnow()}},
            ),
        )

    # ── 直播设置 ──────────────────────────────────────────────────────

    async def get_stream_settings(self) -> StreamSettings | None:
        doc = await self._run("获取直播设置", lambda: self.db[_SETTINGS].find_one({}, _NO_OBJECT_ID))
        return StreamSettings.model_validate(doc) if doc else None

    async def update_stream_settings(
        self, settings_id: str, fields: StreamSettingsUpdate,
    ) -> StreamSettings:
        doc = await self._update(
            _SETTINGS, settings_id, fields.model_dump(exclude_unset=True), "更新直播设置",
        )
        return StreamSettings.model_validate(doc)

    # ── 聊天消息 ──────────────────────────────────────────────────────

    async def list_chat_messages(self, stream_id: str, limit: int = 50) -> list[ChatMessage]:
        # 先按时间倒序取最近 N 条，再反转为正序
        docs = await self._find_many(
            _CHAT_MESSAGES, {"stream_id": stream_id}, "timestamp", "获取聊天消息", limit=limit,
        )
        docs.reverse()
        return [ChatMessage.model_validate(doc) for doc in docs]

    async def create_chat_message(self, fields: ChatMessageCreate) -> ChatMessage:
        doc = await self._insert(_CHAT_MESSAGES, fields.model_dump(), "保存聊天消息")
        return ChatMessage.model_validate(doc)

    async def aclose(self) -> None:
        await close_mongo()
