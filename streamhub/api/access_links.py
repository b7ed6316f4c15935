"""
streamhub.api.access_links
~~~~~~~~~~~~~~~~~~~~~~~~~~

访问链接管理接口（管理员）。

端点:
  - ``GET  /access-links?streamId=``  → 列出访问链接（新的在前）
  - ``POST /access-links``            → 为直播生成新的访问链接
"""
from fastapi import APIRouter, Depends, Query, Request, status

from streamhub.api.deps import get_services, require_admin
from streamhub.core.errors import NotFound, ValidationError
from streamhub.core.logging import get_logger
from streamhub.core.rate_limit import client_identifier, limiter, raise_if_limited
from streamhub.core.security import generate_access_token
from streamhub.schemas.api_response import ApiResponse
from streamhub.schemas.cms import AccessLink, AccessLinkCreate, as_utc, utcnow
from streamhub.schemas.requests import AccessLinkCreateRequest, AccessLinkListData
from streamhub.services.live_system import AppServices

logger = get_logger(__name__)

router: APIRouter = APIRouter(dependencies=[Depends(require_admin)])


@router.get(
    "/access-links",
    summary="获取访问链接列表",
    response_model=ApiResponse[AccessLinkListData],
)
@limiter.limit("30/minute")
async def list_access_links(
    request: Request,
    stream_id: str | None = Query(default=None, alias="streamId", description="按直播过滤"),
    services: AppServices = Depends(get_services),
):
    links = await services.cms.list_access_links(stream_id)
    return ApiResponse.ok(data=AccessLinkListData(access_links=links))


@router.post(
    "/access-links",
    summary="生成访问链接",
    status_code=status.HTTP_201_CREATED,
    response_model=ApiResponse[AccessLink],
)
async def create_access_link(
    request: Request,
    body: AccessLinkCreateRequest,
    services: AppServices = Depends(get_services),
):
    """为指定直播生成一个新的访问令牌及观看链接。

    过期时间如果给出，必须晚于当前时间。
    """
    settings = services.settings
    raise_if_limited(
        services.rate_limiter,
        client_identifier(request),
        settings.ACCESS_LINK_RATE_LIMIT,
        settings.ACCESS_LINK_RATE_WINDOW_MS,
        scope="access_link",
    )

    expiration_date = as_utc(body.expiration_date) if body.expiration_date else None
    if expiration_date is not None and expiration_date <= utcnow():
        raise ValidationError("过期时间必须晚于当前时间")

    if await services.cms.get_stream_session(body.stream_session_id) is None:
        raise NotFound("直播不存在")

    token = generate_access_token()
    link = await services.cms.create_access_link(
        AccessLinkCreate(
            access_token=token,
            stream_id=body.stream_session_id,
            permissions=body.permissions,
            expiration_date=expiration_date,
            generated_link=f"{settings.PUBLIC_BASE_URL.rstrip('/')}/watch?token={token}",
        ),
    )
    logger.info(
        "访问链接已创建 | stream=%s | link=%s | permissions=%s",
        link.stream_id, link.id, link.permissions,
    )
    return ApiResponse.ok(data=link, msg="created", code=status.HTTP_201_CREATED)
