"""
streamhub.core.security
~~~~~~~~~~~~~~~~~~~~~~~

输入清洗与校验 —— 纯函数，无 I/O，便于单元测试。

- ``sanitize_message``           → 清洗聊天文本（去标签、截断）
- ``validate_viewer_name``       → 校验观众昵称
- ``is_valid_message_type``      → 校验消息类型
- ``check_chat_input``           → 按权限校验并清洗一条待发送的聊天消息
- ``validate_access_token_format`` → 本地校验访问令牌格式
- ``generate_access_token``      → 生成新的访问令牌
- ``verify_admin_token``         → 管理员 Bearer 令牌校验
"""
from __future__ import annotations

import re
import secrets
import string
from typing import NamedTuple

from streamhub.core.config import Settings
from streamhub.core.errors import ConfigurationError, Unauthorized, ValidationError
from streamhub.schemas.cms import MESSAGE_TYPES, can_chat, can_moderate

MAX_MESSAGE_LENGTH: int = 500
MIN_VIEWER_NAME_LENGTH: int = 2
MAX_VIEWER_NAME_LENGTH: int = 50

TOKEN_PREFIX: str = "tkn_"
TOKEN_RANDOM_LENGTH: int = 32
MIN_TOKEN_LENGTH: int = 20
MAX_TOKEN_LENGTH: int = 128

_TAG_RE = re.compile(r"<[^>]*>")
_VIEWER_NAME_RE = re.compile(r"^[A-Za-z0-9_\-\s]+$")
_TOKEN_RE = re.compile(r"^tkn_[A-Za-z0-9_]+$")
_TOKEN_ALPHABET = string.ascii_letters + string.digits


def sanitize_message(text: str) -> str:
    """清洗聊天文本：去首尾空白、去除所有 ``<...>`` 标签、截断到 500 字符。

    返回空字符串表示内容无效，调用方必须拒绝。
    """
    cleaned = _TAG_RE.sub("", text.strip()).strip()
    return cleaned[:MAX_MESSAGE_LENGTH]


def validate_viewer_name(name: str) -> bool:
    """昵称去空白后长度在 [2, 50]，且只包含字母、数字、下划线、连字符和空白。"""
    trimmed = name.strip()
    if not MIN_VIEWER_NAME_LENGTH <= len(trimmed) <= MAX_VIEWER_NAME_LENGTH:
        return False
    return _VIEWER_NAME_RE.fullmatch(trimmed) is not None


def is_valid_message_type(kind: str) -> bool:
    return kind in MESSAGE_TYPES


class CheckedChat(NamedTuple):
    message: str
    viewer_name: str
    message_type: str


def check_chat_input(
    message: str,
    viewer_name: str,
    message_type: str,
    permission: str,
) -> CheckedChat:
    """校验并清洗一条待发送的聊天消息。

    服务端转发、HTTP 发送与观众端会话共用这一套规则。

    Raises:
        Unauthorized: 权限不足（view-only 发言，或非主持人发送主持人消息）。
        ValidationError: 昵称、消息类型或内容不合法。
    """
    if not can_chat(permission):
        raise Unauthorized("当前权限不允许发言")
    if not validate_viewer_name(viewer_name):
        raise ValidationError("昵称需为 2-50 个字符，只能包含字母、数字、空格、下划线和连字符")
    if not is_valid_message_type(message_type) or message_type == "system":
        raise ValidationError("消息类型不合法")
    if message_type == "moderator" and not can_moderate(permission):
        raise Unauthorized("只有主持人可以发送主持人消息")
    clean = sanitize_message(message)
    if not clean:
        raise ValidationError("消息内容不能为空")
    return CheckedChat(clean, viewer_name.strip(), message_type)


def validate_access_token_format(token: str) -> bool:
    """本地格式检查：``tkn_`` 前缀、长度 20-128、仅字母数字下划线。"""
    if not token or not isinstance(token, str):
        return False
    if not MIN_TOKEN_LENGTH <= len(token) <= MAX_TOKEN_LENGTH:
        return False
    return _TOKEN_RE.fullmatch(token) is not None


def generate_access_token() -> str:
    """生成 ``tkn_`` + 32 位随机字母数字的访问令牌。"""
    body = "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(TOKEN_RANDOM_LENGTH))
    return f"{TOKEN_PREFIX}{body}"


def verify_admin_token(authorization: str | None, settings: Settings) -> None:
    """校验 ``Authorization: Bearer <token>`` 请求头。

    ``ADMIN_ACCESS_ENABLED`` 为 False 时放行（仅限本地使用）。

    Raises:
        ConfigurationError: 开启了校验但未配置 ``ADMIN_TOKEN``。
        Unauthorized: 请求头缺失或令牌不匹配。
    """
    if not settings.ADMIN_ACCESS_ENABLED:
        return
    if not settings.ADMIN_TOKEN:
        raise ConfigurationError("管理员令牌未配置（ADMIN_TOKEN）")

    scheme, _, credentials = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not credentials:
        raise Unauthorized("缺少管理员令牌")
    if not secrets.compare_digest(credentials.strip(), settings.ADMIN_TOKEN):
        raise Unauthorized("管理员令牌无效")
