"""
streamhub.api.chat
~~~~~~~~~~~~~~~~~~

聊天接口 —— 历史回看与 HTTP 发送。

端点:
  - ``GET  /chat/{stream_id}?limit=``  → 最近的聊天消息（按时间正序）
  - ``POST /chat/{stream_id}``         → 凭访问令牌发送一条消息（持久化并广播到直播间）
"""
from fastapi import APIRouter, Depends, Query, Request, status

from streamhub.api.deps import get_services
from streamhub.core.config import settings
from streamhub.core.errors import Unauthorized
from streamhub.core.rate_limit import client_identifier, limiter, raise_if_limited
from streamhub.schemas.api_response import ApiResponse
from streamhub.schemas.cms import ChatMessage
from streamhub.schemas.requests import ChatHistoryData, ChatPostRequest
from streamhub.services.live_system import AppServices

router: APIRouter = APIRouter()


@router.get(
    "/chat/{stream_id}",
    summary="获取聊天历史",
    response_model=ApiResponse[ChatHistoryData],
)
@limiter.limit(settings.GLOBAL_API_RATE_LIMIT)
async def get_chat_history(
    request: Request,
    stream_id: str,
    limit: int = Query(50, ge=1, le=200, description="最大返回条数"),
    services: AppServices = Depends(get_services),
):
    """获取指定直播最近 ``limit`` 条聊天消息（按时间正序）。"""
    messages = await services.chat.history(stream_id, limit)
    return ApiResponse.ok(
        data=ChatHistoryData(stream_id=stream_id, messages=messages, total=len(messages)),
    )


@router.post(
    "/chat/{stream_id}",
    summary="发送聊天消息",
    status_code=status.HTTP_201_CREATED,
    response_model=ApiResponse[ChatMessage],
)
async def post_chat_message(
    request: Request,
    stream_id: str,
    body: ChatPostRequest,
    services: AppServices = Depends(get_services),
):
    """校验、清洗并保存一条聊天消息，同时广播给该直播间的在线观众。

    令牌必须属于该直播，且权限为 ``chat`` 或 ``moderator``。

    Args:
        request: FastAPI Request 对象（用于限流判断）。
        stream_id: 直播 ID。
        body: 访问令牌、消息内容、昵称与类型。
    """
    client_id = client_identifier(request)
    raise_if_limited(
        services.rate_limiter,
        client_id,
        services.settings.CHAT_RATE_LIMIT,
        services.settings.CHAT_RATE_WINDOW_MS,
        scope="chat",
        msg="发送消息过于频繁，请稍后再试",
    )
    grant = await services.tokens.validate(body.token)
    if grant.stream_id != stream_id:
        raise Unauthorized("令牌不属于该直播")

    saved = await services.chat.post(
        stream_id,
        body.message_content,
        body.viewer_name,
        body.message_type,
        permission=grant.permission,
        message_id=body.message_id,
        viewer_ip=client_id,
    )
    return ApiResponse.ok(data=saved, msg="created", code=status.HTTP_201_CREATED)
