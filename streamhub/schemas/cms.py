"""
streamhub.schemas.cms
~~~~~~~~~~~~~~~~~~~~~

CMS 中存储的领域对象（直播、访问链接、聊天消息、直播设置）及其写入模型。

各 CMS 适配器负责把后端原始结构映射为这里的扁平模型，
业务层只依赖这些模型，不感知具体存储。
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal

from pydantic import AfterValidator, BaseModel, Field

StreamStatus = Literal["scheduled", "live", "ended", "private"]
StreamQuality = Literal["720p", "1080p", "4k"]
PrivacyLevel = Literal["private", "unlisted", "public"]
PermissionLevel = Literal["view-only", "chat", "moderator"]
MessageType = Literal["regular", "system", "moderator"]

PERMISSION_LEVELS: tuple[str, ...] = ("view-only", "chat", "moderator")
MESSAGE_TYPES: tuple[str, ...] = ("regular", "system", "moderator")

# 权限按能力全序排列：view-only < chat < moderator
_PERMISSION_RANK: dict[str, int] = {level: rank for rank, level in enumerate(PERMISSION_LEVELS)}


def can_chat(permission: str) -> bool:
    """``chat`` 及以上权限可以发言。"""
    return _PERMISSION_RANK.get(permission, -1) >= _PERMISSION_RANK["chat"]


def can_moderate(permission: str) -> bool:
    return _PERMISSION_RANK.get(permission, -1) >= _PERMISSION_RANK["moderator"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # MongoDB 与部分 CMS 返回不带时区的 UTC 时间
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


# ── 读取模型 ──────────────────────────────────────────────────────────

class StreamSession(BaseModel):
    """一场直播。"""

    id: str = Field(..., description="直播唯一标识")
    title: str = Field(default="", description="CMS 对象标题")
    stream_title: str = Field(..., description="直播标题")
    description: str = Field(default="", description="直播简介")
    status: StreamStatus = Field(default="scheduled", description="直播状态")
    stream_key: str | None = Field(default=None, description="推流密钥")
    mux_live_input_id: str | None = Field(default=None, description="Mux 直播输入 ID")
    mux_playback_id: str | None = Field(default=None, description="Mux 播放 ID")
    start_time: str | None = Field(default=None, description="计划开始时间")
    end_time: str | None = Field(default=None, description="计划结束时间")
    viewer_count: int = Field(default=0, description="最近一次记录的观看人数")
    chat_enabled: bool = Field(default=True, description="是否开启聊天")
    stream_quality: StreamQuality | None = Field(default=None, description="画质")
    tags: str = Field(default="", description="标签（逗号分隔）")
    recording_url: str | None = Field(default=None, description="录像地址")
    created_at: UtcDatetime | None = Field(default=None, description="创建时间")


class AccessLink(BaseModel):
    """访问链接：令牌 → 直播 + 权限。"""

    id: str = Field(..., description="访问链接 ID")
    access_token: str = Field(..., description="访问令牌")
    stream_id: str = Field(..., description="所属直播 ID")
    permissions: PermissionLevel = Field(default="view-only", description="权限级别")
    active: bool = Field(default=True, description="是否启用")
    expiration_date: UtcDatetime | None = Field(default=None, description="过期时间（为空表示永不过期）")
    usage_count: int = Field(default=0, description="成功校验次数")
    last_accessed: UtcDatetime | None = Field(default=None, description="最近一次校验时间")
    generated_link: str | None = Field(default=None, description="观看链接")
    created_at: UtcDatetime | None = Field(default=None, description="创建时间")

    def is_valid_at(self, now: datetime) -> bool:
        """``active`` 且（无过期时间或过期时间晚于 ``now``）时有效。"""
        if not self.active:
            return False
        return self.expiration_date is None or self.expiration_date > now


class ChatMessage(BaseModel):
    """一条持久化的聊天消息（创建后不可变）。"""

    id: str = Field(..., description="CMS 对象 ID")
    message_id: str | None = Field(default=None, description="客户端生成的消息去重 ID")
    message_content: str = Field(..., description="消息文本")
    viewer_name: str = Field(..., description="观众昵称")
    stream_id: str = Field(..., description="所属直播 ID")
    message_type: MessageType = Field(default="regular", description="消息类型")
    timestamp: UtcDatetime = Field(default_factory=utcnow, description="发送时间")
    viewer_ip: str | None = Field(default=None, description="发送者标识（哈希后）")


class StreamSettings(BaseModel):
    """全局直播设置（单例）。"""

    id: str
    default_title_template: str | None = None
    default_description: str | None = None
    auto_record: bool = False
    default_privacy: PrivacyLevel | None = None
    default_quality: StreamQuality | None = None
    default_chat_enabled: bool = True
    overlay_settings: dict[str, Any] = Field(default_factory=dict)
    notification_settings: dict[str, Any] = Field(default_factory=dict)


# ── 写入模型 ──────────────────────────────────────────────────────────

class StreamSessionCreate(BaseModel):
    stream_title: str = Field(..., min_length=1, max_length=100)
    description: str = ""
    status: StreamStatus = "scheduled"
    stream_key: str | None = None
    mux_live_input_id: str | None = None
    mux_playback_id: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    chat_enabled: bool = True
    stream_quality: StreamQuality = "1080p"
    tags: str = ""


class StreamSessionUpdate(BaseModel):
    """直播部分更新，仅写入显式给出的字段。"""

    stream_title: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = None
    status: StreamStatus | None = None
    stream_key: str | None = None
    mux_live_input_id: str | None = None
    mux_playback_id: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    viewer_count: int | None = Field(default=None, ge=0)
    chat_enabled: bool | None = None
    recording_url: str | None = None


class AccessLinkCreate(BaseModel):
    access_token: str
    stream_id: str
    permissions: PermissionLevel = "view-only"
    expiration_date: UtcDatetime | None = None
    generated_link: str | None = None


class ChatMessageCreate(BaseModel):
    message_content: str
    viewer_name: str
    stream_id: str
    message_type: MessageType = "regular"
    message_id: str | None = None
    viewer_ip: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)


class StreamSettingsUpdate(BaseModel):
    default_title_template: str | None = None
    default_description: str | None = None
    auto_record: bool | None = None
    default_privacy: PrivacyLevel | None = None
    default_quality: StreamQuality | None = None
    default_chat_enabled: bool | None = None
    overlay_settings: dict[str, Any] | None = None
    notification_settings: dict[str, Any] | None = None
