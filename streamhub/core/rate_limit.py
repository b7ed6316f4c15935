"""
streamhub.core.rate_limit
~~~~~~~~~~~~~~~~~~~~~~~~~

API 与 WebSocket 的限流。

- ``FixedWindowRateLimiter`` —— 固定窗口计数器，保护聊天发送、令牌校验、
  访问链接创建等敏感接口（以及 WebSocket 聊天）。
- ``limiter`` —— slowapi 全局限流器，用于只读接口的粗粒度限流。

两者都以 ``client_identifier()`` 作为限流键：取客户端 IP 后做 SHA-256，
日志和存储中不出现原始地址。

限流状态只在当前进程内有效；多实例部署需要外部共享计数器（如 Redis）。
"""
from __future__ import annotations

import hashlib
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from slowapi import Limiter
from starlette.requests import HTTPConnection

from streamhub.core.errors import RateLimited
from streamhub.core.logging import get_logger

logger = get_logger(__name__)


def _now_ms() -> float:
    return time.time() * 1000


@dataclass
class RateLimitWindow:
    """单个固定窗口的计数状态。"""

    count: int
    reset_time: float


class FixedWindowRateLimiter:
    """固定窗口限流器。

    窗口键为 ``(scope, identifier, floor(now / window_ms))``，不同 ``scope`` 的计数互不影响。
    窗口不会被主动滚动，过期窗口由 ``sweep()`` 周期性清理；限流判断本身不依赖清理时机。

    Attributes:
        clock: 返回当前毫秒时间戳的函数（测试中可替换）。
    """

    def __init__(self, clock: Callable[[], float] = _now_ms) -> None:
        self.clock = clock
        self._windows: dict[tuple[str, str, int], RateLimitWindow] = {}
        self._lock = threading.Lock()

    def allow(
        self,
        identifier: str,
        max_requests: int,
        window_ms: int,
        scope: str = "default",
    ) -> bool:
        """检查并计数一次请求。

        Args:
            identifier: 限流标识（通常为哈希后的客户端地址）。
            max_requests: 窗口内允许的最大请求数。
            window_ms: 窗口长度（毫秒）。
            scope: 限流类别（如 ``chat``、``token``）。

        Returns:
            允许时返回 True 并计数；达到上限时返回 False，不计数。
        """
        now = self.clock()
        window_index = int(now // window_ms)
        key = (scope, identifier, window_index)

        with self._lock:
            window = self._windows.get(key)
            if window is None:
                window = RateLimitWindow(count=0, reset_time=(window_index + 1) * window_ms)
                self._windows[key] = window
            if window.count < max_requests:
                window.count += 1
                return True
            return False

    def sweep(self) -> int:
        """删除所有已过期的窗口，返回删除数量。"""
        now = self.clock()
        with self._lock:
            expired = [key for key, window in self._windows.items() if window.reset_time < now]
            for key in expired:
                del self._windows[key]
        if expired:
            logger.debug("限流窗口清理 | 删除 %d 条", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._windows)


def raise_if_limited(
    rate_limiter: FixedWindowRateLimiter,
    identifier: str,
    max_requests: int,
    window_ms: int,
    scope: str = "default",
    msg: str | None = None,
) -> None:
    """路由层快捷方法：超限时抛出 ``RateLimited``。"""
    if not rate_limiter.allow(identifier, max_requests, window_ms, scope):
        logger.info(
            "触发限流 | scope=%s | client=%s | limit=%d/%dms",
            scope, identifier[:12], max_requests, window_ms,
        )
        raise RateLimited(msg)


def hash_identifier(raw: str) -> str:
    """对原始地址做单向哈希。"""
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def client_address(conn: HTTPConnection) -> str:
    """按 x-forwarded-for（首个 IP）→ x-real-ip → cf-connecting-ip → 对端地址的顺序取客户端 IP。"""
    forwarded = conn.headers.get("x-forwarded-for")
    if forwarded:
        first_ip = forwarded.split(",")[0].strip()
        if first_ip:
            return first_ip
    for header in ("x-real-ip", "cf-connecting-ip"):
        value = conn.headers.get(header)
        if value:
            return value.strip()
    if conn.client is not None and conn.client.host:
        return conn.client.host
    return "unknown"


def client_identifier(request: HTTPConnection) -> str:
    """HTTP 请求和 WebSocket 共用的限流键。"""
    return hash_identifier(client_address(request))


# --------- HTTP 只读接口限流器 ---------
limiter = Limiter(
    key_func=client_identifier,
    storage_uri="memory://",
)
