"""
streamhub.api.tokens
~~~~~~~~~~~~~~~~~~~~

访问令牌校验接口 —— 观看页在进入直播前调用。
"""
from fastapi import APIRouter, Depends, Request

from streamhub.api.deps import get_services
from streamhub.core.rate_limit import client_identifier, raise_if_limited
from streamhub.schemas.api_response import ApiResponse
from streamhub.schemas.requests import TokenGrantData, ValidateTokenRequest
from streamhub.services.live_system import AppServices

router: APIRouter = APIRouter()


@router.post(
    "/validate-token",
    summary="校验访问令牌",
    response_model=ApiResponse[TokenGrantData],
)
async def validate_token(
    request: Request,
    body: ValidateTokenRequest,
    services: AppServices = Depends(get_services),
):
    """校验令牌并返回权限与直播信息。

    格式错误返回 400；令牌不存在、停用或过期返回 401。
    """
    raise_if_limited(
        services.rate_limiter,
        client_identifier(request),
        services.settings.TOKEN_RATE_LIMIT,
        services.settings.TOKEN_RATE_WINDOW_MS,
        scope="token",
        msg="校验请求过于频繁，请稍后再试",
    )
    grant = await services.tokens.validate(body.token)
    stream = await services.cms.get_stream_session(grant.stream_id)
    return ApiResponse.ok(
        data=TokenGrantData(
            access_link_id=grant.access_link_id,
            permissions=grant.permission,
            expiration_date=grant.expiration_date,
            usage_count=grant.usage_count,
            stream_id=grant.stream_id,
            stream_session=stream,
        ),
    )
