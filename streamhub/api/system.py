"""
streamhub.api.system
~~~~~~~~~~~~~~~~~~~~

系统接口 —— Mux 凭证检查与全局直播设置。

端点:
  - ``GET   /mux/validate``  → Mux 凭证是否齐全且有效
  - ``GET   /settings``      → 读取直播设置（管理员）
  - ``PATCH /settings``      → 更新直播设置（管理员）
"""
from fastapi import APIRouter, Depends

from streamhub.api.deps import get_services, require_admin
from streamhub.core.errors import NotFound
from streamhub.schemas.api_response import ApiResponse
from streamhub.schemas.cms import StreamSettings, StreamSettingsUpdate
from streamhub.schemas.requests import MuxValidationData
from streamhub.services.live_system import AppServices

router: APIRouter = APIRouter()


@router.get(
    "/mux/validate",
    summary="检查 Mux 凭证",
    response_model=ApiResponse[MuxValidationData],
)
async def validate_mux(services: AppServices = Depends(get_services)):
    result = await services.mux.validate_credentials()
    msg = "success" if result.is_configured else "Mux 凭证未配置"
    return ApiResponse.ok(data=MuxValidationData(**result.model_dump()), msg=msg)


@router.get(
    "/settings",
    summary="读取直播设置",
    response_model=ApiResponse[StreamSettings | None],
    dependencies=[Depends(require_admin)],
)
async def get_settings(services: AppServices = Depends(get_services)):
    return ApiResponse.ok(data=await services.cms.get_stream_settings())


@router.patch(
    "/settings",
    summary="更新直播设置",
    response_model=ApiResponse[StreamSettings],
    dependencies=[Depends(require_admin)],
)
async def update_settings(
    body: StreamSettingsUpdate,
    services: AppServices = Depends(get_services),
):
    current = await services.cms.get_stream_settings()
    if current is None:
        raise NotFound("直播设置尚未初始化")
    updated = await services.cms.update_stream_settings(current.id, body)
    return ApiResponse.ok(data=updated)
