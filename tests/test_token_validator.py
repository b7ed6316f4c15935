"""
tests.test_token_validator
~~~~~~~~~~~~~~~~~~~~~~~~~~

访问令牌校验流程的单元测试。
"""
from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from streamhub.core.errors import BackendUnavailable, Unauthorized, ValidationError
from streamhub.schemas.cms import utcnow
from streamhub.services.token_validator import TokenValidator
from tests.conftest import VALID_TOKEN, FakeCms, future, past


async def _settle() -> None:
    """让后台任务有机会执行完。"""
    for _ in range(3):
        await asyncio.sleep(0)


class TestTokenValidator:
    """测试令牌 → 授权的解析。"""

    @pytest.mark.asyncio
    async def test_valid_token_grants_permission(self, fake_cms: FakeCms) -> None:
        link = fake_cms.add_link(VALID_TOKEN, "stream-1", "moderator", usage_count=4)
        grant = await TokenValidator(fake_cms).validate(VALID_TOKEN)

        assert grant.stream_id == "stream-1"
        assert grant.permission == "moderator"
        assert grant.access_link_id == link.id
        assert grant.usage_count == 5

    @pytest.mark.asyncio
    async def test_usage_is_incremented_in_background(self, fake_cms: FakeCms) -> None:
        link = fake_cms.add_link(VALID_TOKEN)
        await TokenValidator(fake_cms).validate(VALID_TOKEN)
        await _settle()
        assert fake_cms.usage_increments == [link.id]
        assert fake_cms.links[link.id].usage_count == 1

    @pytest.mark.asyncio
    async def test_usage_failure_does_not_fail_validation(self, fake_cms: FakeCms) -> None:
        fake_cms.add_link(VALID_TOKEN)
        fake_cms.increment_access_link_usage = AsyncMock(side_effect=BackendUnavailable())

        grant = await TokenValidator(fake_cms).validate(VALID_TOKEN)
        await _settle()

        assert grant.permission == "chat"
        fake_cms.increment_access_link_usage.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", [None, ""])
    async def test_missing_token(self, fake_cms: FakeCms, token: str | None) -> None:
        with pytest.raises(ValidationError):
            await TokenValidator(fake_cms).validate(token)

    @pytest.mark.asyncio
    async def test_malformed_token_skips_cms(self, fake_cms: FakeCms) -> None:
        fake_cms.get_access_link_by_token = AsyncMock()
        with pytest.raises(ValidationError):
            await TokenValidator(fake_cms).validate("not-a-token")
        fake_cms.get_access_link_by_token.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_token(self, fake_cms: FakeCms) -> None:
        with pytest.raises(Unauthorized):
            await TokenValidator(fake_cms).validate(VALID_TOKEN)

    @pytest.mark.asyncio
    async def test_inactive_link(self, fake_cms: FakeCms) -> None:
        fake_cms.add_link(VALID_TOKEN, active=False)
        with pytest.raises(Unauthorized):
            await TokenValidator(fake_cms).validate(VALID_TOKEN)

    @pytest.mark.asyncio
    async def test_expired_link(self, fake_cms: FakeCms) -> None:
        fake_cms.add_link(VALID_TOKEN, expiration_date=past())
        with pytest.raises(Unauthorized):
            await TokenValidator(fake_cms).validate(VALID_TOKEN)

    @pytest.mark.asyncio
    async def test_future_expiration_is_valid(self, fake_cms: FakeCms) -> None:
        fake_cms.add_link(VALID_TOKEN, expiration_date=future())
        grant = await TokenValidator(fake_cms).validate(VALID_TOKEN)
        assert grant.expiration_date is not None

    @pytest.mark.asyncio
    async def test_expiration_uses_clock_at_call_time(self, fake_cms: FakeCms) -> None:
        """同一个链接，在过期时间之前有效，之后无效。"""
        expires = utcnow() + timedelta(minutes=10)
        fake_cms.add_link(VALID_TOKEN, expiration_date=expires)
        now = [expires - timedelta(seconds=1)]
        validator = TokenValidator(fake_cms, clock=lambda: now[0])

        await validator.validate(VALID_TOKEN)
        now[0] = expires
        with pytest.raises(Unauthorized):
            await validator.validate(VALID_TOKEN)

    @pytest.mark.asyncio
    async def test_backend_failure_propagates(self, fake_cms: FakeCms) -> None:
        fake_cms.fail_with = BackendUnavailable()
        with pytest.raises(BackendUnavailable):
            await TokenValidator(fake_cms).validate(VALID_TOKEN)
