"""
streamhub.services.token_validator
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

访问令牌校验 —— 把观众持有的令牌解析为（直播, 权限）授权。

流程:
  1. 本地格式校验（不访问 CMS）。
  2. 通过 CMS 按令牌查找访问链接。
  3. 检查 ``active`` 与过期时间（以调用时刻的系统时间为准）。
  4. 以后台任务方式累加使用次数，失败只记录日志，不影响本次授权。
"""
from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from pydantic import BaseModel, Field

from streamhub.cms import CmsClient
from streamhub.core.errors import Unauthorized, ValidationError
from streamhub.core.logging import get_logger
from streamhub.core.security import validate_access_token_format
from streamhub.core.tasks import spawn_background
from streamhub.schemas.cms import PermissionLevel, utcnow

logger = get_logger(__name__)


class TokenGrant(BaseModel):
    """一次成功校验的结果。"""

    access_link_id: str
    stream_id: str
    permission: PermissionLevel
    expiration_date: datetime | None = None
    usage_count: int = Field(..., description="包含本次在内的使用次数")


class TokenValidator:
    """访问令牌校验器。

    Attributes:
        cms: CMS 客户端。
    """

    def __init__(self, cms: CmsClient, clock: Callable[[], datetime] = utcnow) -> None:
        self.cms = cms
        self._clock = clock

    async def validate(self, token: str | None) -> TokenGrant:
        """校验令牌并返回授权。

        Raises:
            ValidationError: 令牌缺失或格式不合法。
            Unauthorized: 令牌不存在、已停用或已过期。
            BackendUnavailable: CMS 不可用。
        """
        if not token:
            raise ValidationError("缺少访问令牌")
        if not validate_access_token_format(token):
            raise ValidationError("访问令牌格式不合法")

        link = await self.cms.get_access_link_by_token(token)
        if link is None:
            logger.info("令牌不存在 | token=%s...", token[:8])
            raise Unauthorized()
        if not link.is_valid_at(self._clock()):
            logger.info("令牌已停用或过期 | link=%s", link.id)
            raise Unauthorized()

        spawn_background(
            self.cms.increment_access_link_usage(link.id),
            name=f"access-link-usage-{link.id}",
        )

        return TokenGrant(
            access_link_id=link.id,
            stream_id=link.stream_id,
            permission=link.permissions,
            expiration_date=link.expiration_date,
            usage_count=link.usage_count + 1,
        )
