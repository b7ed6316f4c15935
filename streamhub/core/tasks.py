"""
streamhub.core.tasks
~~~~~~~~~~~~~~~~~~~~

后台任务工具 —— 尽力而为的副作用（使用计数、消息持久化）与周期性清理。

``spawn_background()`` 创建的任务不会被调用方 await，失败只记录日志；
任务对象保存在模块级集合中，防止在完成前被垃圾回收。
"""
from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from streamhub.core.logging import get_logger

logger = get_logger(__name__)

_background_tasks: set[asyncio.Task[Any]] = set()


def _on_done(task: asyncio.Task[Any]) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("后台任务失败 | task=%s | %s", task.get_name(), exc, exc_info=exc)


def spawn_background(coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
    """以 fire-and-forget 方式调度协程。

    Args:
        coro: 要执行的协程。
        name: 任务名，出现在失败日志中。

    Returns:
        创建的 ``asyncio.Task``（测试中可 await 它等待完成）。
    """
    task = asyncio.create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_on_done)
    return task


async def drain_background(timeout: float = 5.0) -> None:
    """等待当前所有后台任务结束（关闭阶段调用）。"""
    pending = list(_background_tasks)
    if not pending:
        return
    _, still_running = await asyncio.wait(pending, timeout=timeout)
    for task in still_running:
        task.cancel()


async def run_periodically(
    interval: float,
    func: Callable[[], Awaitable[Any] | Any],
    name: str,
) -> None:
    """每隔 ``interval`` 秒执行一次 ``func``，直到被取消。

    单次执行失败只记录日志，不会中断循环。
    """
    while True:
        await asyncio.sleep(interval)
        try:
            result = func()
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.warning("周期任务执行失败 | task=%s | %s", name, e, exc_info=True)
