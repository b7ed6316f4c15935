"""
streamhub.api.live_ws
~~~~~~~~~~~~~~~~~~~~~

直播间实时连接 —— ``/ws?streamId=...&token=...``。

连接建立后先校验令牌，且令牌必须属于 ``streamId`` 对应的直播；失败时以
自定义关闭码断开:

  - ``4400`` 参数缺失或令牌格式错误
  - ``4401`` 令牌无效、过期或不属于该直播
  - ``4429`` 校验请求过于频繁
  - ``1011`` 后端不可用

消息协议:
  - 服务端推送 ``{"type", "data", "timestamp"}``（见 ``streamhub.schemas.events``）
  - 客户端只可推送 ``{"type": "chat", "data": {message, viewer_name, message_type, message_id?}}``
  - 被拒绝的消息只向发送者回复一条 ``system`` 事件，不会广播
"""
from __future__ import annotations

import uuid

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PayloadError

from streamhub.core.errors import AppError, RateLimited, Unauthorized, ValidationError
from streamhub.core.logging import get_logger, request_id_ctx_var
from streamhub.core.rate_limit import client_identifier
from streamhub.schemas.events import ClientChatEnvelope, system_event
from streamhub.services.connection import Connection
from streamhub.services.live_system import AppServices
from streamhub.services.token_validator import TokenGrant

logger = get_logger(__name__)

router: APIRouter = APIRouter()

CLOSE_BAD_REQUEST = 4400
CLOSE_UNAUTHORIZED = 4401
CLOSE_RATE_LIMITED = 4429
CLOSE_INTERNAL_ERROR = 1011


def _close_code_for(exc: AppError) -> int:
    if isinstance(exc, ValidationError):
        return CLOSE_BAD_REQUEST
    if isinstance(exc, Unauthorized):
        return CLOSE_UNAUTHORIZED
    if isinstance(exc, RateLimited):
        return CLOSE_RATE_LIMITED
    return CLOSE_INTERNAL_ERROR


async def _authorize(
    services: AppServices,
    stream_id: str | None,
    token: str | None,
    client_id: str,
) -> TokenGrant:
    """校验握手参数，返回令牌授权；失败时抛出 ``AppError``。"""
    settings = services.settings
    if not stream_id:
        raise ValidationError("缺少 streamId")
    if not services.rate_limiter.allow(
        client_id, settings.TOKEN_RATE_LIMIT, settings.TOKEN_RATE_WINDOW_MS, scope="token",
    ):
        raise RateLimited()
    grant = await services.tokens.validate(token)
    if grant.stream_id != stream_id:
        raise Unauthorized("令牌不属于该直播")
    return grant


async def _handle_client_message(services: AppServices, conn: Connection, raw: str) -> None:
    """处理一条客户端上行消息。被拒绝时只回复发送者。"""
    try:
        envelope = ClientChatEnvelope.model_validate_json(raw)
    except PayloadError:
        await conn.send_event(system_event("消息格式不合法", code="invalid_payload"))
        return

    settings = services.settings
    if not services.rate_limiter.allow(
        conn.client_id, settings.CHAT_RATE_LIMIT, settings.CHAT_RATE_WINDOW_MS, scope="chat",
    ):
        await conn.send_event(system_event("发送消息过于频繁，请稍后再试", code="rate_limited"))
        return

    data = envelope.data
    try:
        await services.chat.relay(
            conn.stream_id,
            data.message,
            data.viewer_name,
            data.message_type,
            permission=conn.permission,
            message_id=data.message_id,
        )
    except Unauthorized as e:
        await conn.send_event(system_event(e.msg, code="forbidden"))
    except ValidationError as e:
        await conn.send_event(system_event(e.msg, code="invalid_message"))
    except AppError as e:
        logger.warning("聊天转发失败 | stream=%s | %s", conn.stream_id, e.msg)
        await conn.send_event(system_event(e.msg, code="unavailable"))


@router.websocket("/ws")
async def live_stream_endpoint(
    websocket: WebSocket,
    stream_id: str | None = Query(default=None, alias="streamId"),
    token: str | None = Query(default=None),
) -> None:
    """直播间 WebSocket 端点。

    Args:
        websocket: FastAPI WebSocket 连接对象。
        stream_id: 直播 ID。
        token: 访问令牌。
    """
    ws_req_id = f"ws-{uuid.uuid4().hex[:8]}"
    ctx_token = request_id_ctx_var.set(ws_req_id)

    try:
        services: AppServices = websocket.app.state.services
        # 先 accept 才能以自定义关闭码拒绝
        await websocket.accept()
        client_id = client_identifier(websocket)

        try:
            grant = await _authorize(services, stream_id, token, client_id)
        except AppError as e:
            logger.info("实时连接被拒绝 | stream=%s | code=%d | %s", stream_id, e.code, e.msg)
            await websocket.close(code=_close_code_for(e), reason=e.msg)
            return

        conn = Connection(websocket, stream_id, grant.permission, client_id)
        await services.hub.attach(stream_id, conn)
        try:
            while conn.is_open:
                raw: str = await websocket.receive_text()
                await _handle_client_message(services, conn, raw)
        except WebSocketDisconnect:
            pass  # 正常断开
        except Exception as e:
            logger.error("实时连接异常: %s | stream=%s", e, stream_id, exc_info=True)
        finally:
            await services.hub.detach(stream_id, conn)
    finally:
        request_id_ctx_var.reset(ctx_token)
