"""
streamhub.schemas.events
~~~~~~~~~~~~~~~~~~~~~~~~

直播间实时事件 —— 以 ``type`` 字段区分的封闭联合类型。

服务端推送的 JSON 信封统一为 ``{"type": ..., "data": {...}, "timestamp": ...}``，
``type`` ∈ {``chat``, ``viewer_count``, ``stream_status``, ``system``}。
客户端只允许推送 ``chat`` 类型（见 ``ClientChatEnvelope``）。
"""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from streamhub.schemas.cms import MessageType, StreamStatus, utcnow


# ── 事件负载 ──────────────────────────────────────────────────────────

class ChatPayload(BaseModel):
    message: str = Field(..., description="消息文本（已清洗）")
    viewer_name: str = Field(..., description="观众昵称")
    message_type: MessageType = Field(default="regular", description="消息类型")
    message_id: str | None = Field(default=None, description="消息去重 ID")


class ViewerCountPayload(BaseModel):
    count: int = Field(..., ge=0, description="当前在线观众数")


class StreamStatusPayload(BaseModel):
    stream_id: str = Field(..., description="直播 ID")
    status: StreamStatus = Field(..., description="直播状态")


class SystemPayload(BaseModel):
    message: str = Field(..., description="系统提示文本")
    code: str | None = Field(default=None, description="机器可读的提示代码")


# ── 事件信封 ──────────────────────────────────────────────────────────

class _EventBase(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow, description="广播时刻")

    def stamped(self) -> LiveEvent:
        """返回一个以当前时刻为 ``timestamp`` 的副本。"""
        return self.model_copy(update={"timestamp": utcnow()})  # type: ignore[return-value]

    def to_json(self) -> str:
        return self.model_dump_json()


class ChatEvent(_EventBase):
    type: Literal["chat"] = "chat"
    data: ChatPayload


class ViewerCountEvent(_EventBase):
    type: Literal["viewer_count"] = "viewer_count"
    data: ViewerCountPayload


class StreamStatusEvent(_EventBase):
    type: Literal["stream_status"] = "stream_status"
    data: StreamStatusPayload


class SystemEvent(_EventBase):
    type: Literal["system"] = "system"
    data: SystemPayload


LiveEvent = Annotated[
    Union[ChatEvent, ViewerCountEvent, StreamStatusEvent, SystemEvent],
    Field(discriminator="type"),
]

live_event_adapter: TypeAdapter[LiveEvent] = TypeAdapter(LiveEvent)


def parse_live_event(raw: str | bytes) -> LiveEvent:
    """把服务端推送的 JSON 文本解析为具体事件类型。"""
    return live_event_adapter.validate_json(raw)


# ── 构造函数 ──────────────────────────────────────────────────────────

def chat_event(
    viewer_name: str,
    message: str,
    message_type: MessageType = "regular",
    message_id: str | None = None,
) -> ChatEvent:
    return ChatEvent(
        data=ChatPayload(
            message=message,
            viewer_name=viewer_name,
            message_type=message_type,
            message_id=message_id,
        ),
    )


def viewer_count_event(count: int) -> ViewerCountEvent:
    return ViewerCountEvent(data=ViewerCountPayload(count=count))


def stream_status_event(stream_id: str, status: StreamStatus) -> StreamStatusEvent:
    return StreamStatusEvent(data=StreamStatusPayload(stream_id=stream_id, status=status))


def system_event(message: str, code: str | None = None) -> SystemEvent:
    return SystemEvent(data=SystemPayload(message=message, code=code))


# ── 客户端上行 ────────────────────────────────────────────────────────

class ClientChatData(BaseModel):
    message: str = Field(..., description="消息文本（未清洗）")
    viewer_name: str = Field(..., description="观众昵称")
    message_type: str = Field(default="regular", description="消息类型")
    message_id: str | None = Field(default=None, max_length=64, description="消息去重 ID")


class ClientChatEnvelope(BaseModel):
    """客户端推送的聊天请求。"""

    type: Literal["chat"]
    data: ClientChatData
