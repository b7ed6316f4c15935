"""
streamhub.api.streams
~~~~~~~~~~~~~~~~~~~~~

直播管理接口。

端点:
  - ``GET   /streams?status=``       → 直播列表（新的在前）
  - ``POST  /streams``               → 创建直播（管理员，Mux 直播输入 + CMS 记录）
  - ``PATCH /streams/{id}``          → 更新直播（管理员，状态变化会推送给直播间）
  - ``GET   /streams/{id}/viewers``  → 当前在线观众数
"""
from fastapi import APIRouter, Depends, Query, Request, status

from streamhub.api.deps import get_services, require_admin
from streamhub.core.config import settings
from streamhub.core.rate_limit import client_identifier, limiter, raise_if_limited
from streamhub.schemas.api_response import ApiResponse
from streamhub.schemas.cms import StreamSession, StreamSessionUpdate, StreamStatus
from streamhub.schemas.requests import StreamCreatedData, StreamCreateRequest, ViewerCountData
from streamhub.services.live_system import AppServices

router: APIRouter = APIRouter()


@router.get(
    "/streams",
    summary="获取直播列表",
    response_model=ApiResponse[list[StreamSession]],
)
@limiter.limit(settings.GLOBAL_API_RATE_LIMIT)
async def list_streams(
    request: Request,
    stream_status: StreamStatus | None = Query(default=None, alias="status", description="按状态过滤"),
    services: AppServices = Depends(get_services),
):
    streams = await services.streams.list_streams(stream_status)
    return ApiResponse.ok(data=streams)


@router.post(
    "/streams",
    summary="创建直播",
    status_code=status.HTTP_201_CREATED,
    response_model=ApiResponse[StreamCreatedData],
    dependencies=[Depends(require_admin)],
)
async def create_stream(
    request: Request,
    body: StreamCreateRequest,
    services: AppServices = Depends(get_services),
):
    """创建 Mux 直播输入并写入 CMS，返回推流与播放地址。"""
    raise_if_limited(
        services.rate_limiter,
        client_identifier(request),
        services.settings.STREAM_CREATE_RATE_LIMIT,
        services.settings.STREAM_CREATE_RATE_WINDOW_MS,
        scope="stream_create",
    )
    created = await services.streams.create(body)
    return ApiResponse.ok(data=created, msg="created", code=status.HTTP_201_CREATED)


@router.patch(
    "/streams/{stream_id}",
    summary="更新直播",
    response_model=ApiResponse[StreamSession],
    dependencies=[Depends(require_admin)],
)
async def update_stream(
    stream_id: str,
    body: StreamSessionUpdate,
    services: AppServices = Depends(get_services),
):
    updated = await services.streams.update(stream_id, body)
    return ApiResponse.ok(data=updated)


@router.get(
    "/streams/{stream_id}/viewers",
    summary="获取在线观众数",
    response_model=ApiResponse[ViewerCountData],
)
async def stream_viewers(stream_id: str, services: AppServices = Depends(get_services)):
    return ApiResponse.ok(
        data=ViewerCountData(stream_id=stream_id, count=services.streams.viewer_count(stream_id)),
    )
