"""
streamhub.schemas.api_response
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

HTTP 接口的 JSON 外壳 ``{"code", "data", "msg"}``。

``code`` 始终与 HTTP 状态码相同；失败时 ``data`` 为 ``null``，``msg`` 只包含面向用户的原因，
不带堆栈或内部标识。WebSocket 推送不使用这一外壳（见 ``streamhub.schemas.events``）。
"""
from __future__ import annotations

from typing import Any, Generic, TypeVar

from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """路由返回值的统一包装。"""

    code: int = Field(default=200, description="HTTP 状态码")
    data: T = Field(..., description="响应数据")
    msg: str = Field(default="success", description="结果描述")

    @classmethod
    def ok(cls, data: T, msg: str = "success", code: int = 200) -> ApiResponse[T]:
        return cls(code=code, data=data, msg=msg)

    @classmethod
    def fail(cls, msg: str, code: int = 500) -> ApiResponse[Any]:
        return cls(code=code, data=None, msg=msg)

    def to_response(self) -> JSONResponse:
        """按 ``code`` 设置状态码输出，供异常处理器使用。"""
        return JSONResponse(status_code=self.code, content=self.model_dump(mode="json"))
