"""
streamhub.schemas.requests
~~~~~~~~~~~~~~~~~~~~~~~~~~

HTTP 接口的请求体与响应数据模型。
"""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from streamhub.schemas.cms import (
    AccessLink,
    ChatMessage,
    PermissionLevel,
    StreamQuality,
    StreamSession,
    StreamStatus,
)


# ── 访问链接 ──────────────────────────────────────────────────────────

class AccessLinkCreateRequest(BaseModel):
    """创建访问链接请求体。"""

    stream_session_id: str = Field(..., min_length=1, description="所属直播 ID")
    permissions: PermissionLevel = Field(default="view-only", description="权限级别")
    expiration_date: datetime | None = Field(default=None, description="过期时间（必须晚于当前时间）")


class AccessLinkListData(BaseModel):
    access_links: list[AccessLink] = Field(..., description="访问链接列表（新的在前）")


# ── 令牌校验 ──────────────────────────────────────────────────────────

class ValidateTokenRequest(BaseModel):
    token: str = Field(default="", description="访问令牌")


class TokenGrantData(BaseModel):
    """令牌校验成功后返回给观众的授权信息。"""

    valid: bool = Field(default=True)
    access_link_id: str = Field(..., description="访问链接 ID")
    permissions: PermissionLevel = Field(..., description="权限级别")
    expiration_date: datetime | None = Field(default=None, description="过期时间")
    usage_count: int = Field(..., description="包含本次在内的使用次数")
    stream_id: str = Field(..., description="所属直播 ID")
    stream_session: StreamSession | None = Field(default=None, description="直播详情")


# ── 聊天 ──────────────────────────────────────────────────────────────

class ChatPostRequest(BaseModel):
    """HTTP 发送聊天消息请求体。"""

    message_content: str = Field(default="", description="消息文本")
    viewer_name: str = Field(default="", description="观众昵称")
    message_type: str = Field(default="regular", description="消息类型")
    message_id: str | None = Field(default=None, max_length=64, description="消息去重 ID")
    token: str | None = Field(default=None, description="观看者的访问令牌")


class ChatHistoryData(BaseModel):
    stream_id: str = Field(..., description="直播 ID")
    messages: list[ChatMessage] = Field(..., description="消息列表（按时间正序）")
    total: int = Field(..., description="本次返回条数")


# ── 直播 ──────────────────────────────────────────────────────────────

class StreamCreateRequest(BaseModel):
    """创建直播请求体。"""

    stream_title: str = Field(..., min_length=1, max_length=100, description="直播标题")
    description: str = Field(default="", description="直播简介")
    status: StreamStatus = Field(default="scheduled", description="初始状态")
    start_time: str | None = Field(default=None, description="计划开始时间")
    end_time: str | None = Field(default=None, description="计划结束时间")
    chat_enabled: bool = Field(default=True, description="是否开启聊天")
    stream_quality: StreamQuality = Field(default="1080p", description="画质")
    tags: str = Field(default="", description="标签（逗号分隔）")


class StreamCreatedData(BaseModel):
    stream: StreamSession = Field(..., description="CMS 中的直播记录")
    rtmp_url: str = Field(..., description="RTMP 推流地址")
    playback_url: str = Field(..., description="HLS 播放地址")
    thumbnail_url: str = Field(..., description="缩略图地址")


class ViewerCountData(BaseModel):
    stream_id: str = Field(..., description="直播 ID")
    count: int = Field(..., description="当前在线观众数")


class MuxValidationData(BaseModel):
    is_configured: bool = Field(..., description="凭证是否齐全")
    missing_variables: list[str] = Field(default_factory=list, description="缺失的环境变量")
    credentials_valid: bool | None = Field(
        default=None, description="凭证是否通过 Mux API 校验（未配置时为空）",
    )
