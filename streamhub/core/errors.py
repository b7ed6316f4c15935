"""
streamhub.core.errors
~~~~~~~~~~~~~~~~~~~~~

领域异常定义。

所有业务异常均继承 ``AppError``，携带 HTTP 状态码和面向用户的原因描述，
由 ``streamhub.main`` 中注册的异常处理器统一转换为 ``ApiResponse.fail()``。
原因描述中不包含堆栈或内部标识。
"""
from __future__ import annotations


class AppError(Exception):
    """业务异常基类。

    Attributes:
        code: 对应的 HTTP 状态码。
        msg: 面向调用方的原因描述。
    """

    code: int = 500
    default_msg: str = "服务器内部错误"

    def __init__(self, msg: str | None = None) -> None:
        self.msg = msg or self.default_msg
        super().__init__(self.msg)


class ValidationError(AppError):
    """输入格式、长度或字符集不合法（可由用户修正）。"""

    code = 400
    default_msg = "请求参数不合法"


class Unauthorized(AppError):
    """令牌无效、已过期或已停用。"""

    code = 401
    default_msg = "访问令牌无效或已过期"


class NotFound(AppError):
    code = 404
    default_msg = "资源不存在"


class RateLimited(AppError):
    """请求过于频繁，调用方应稍后重试。"""

    code = 429
    default_msg = "请求过于频繁，请稍后再试"


class BackendUnavailable(AppError):
    """CMS 或视频服务不可用（调用方可重试）。"""

    code = 500
    default_msg = "后端服务暂时不可用"


class ConfigurationError(AppError):
    """缺少必要的凭证或配置项。"""

    code = 500
    default_msg = "服务配置不完整"
