"""编译工作池

CPU 密集的编译任务交给有界线程池；调度方单线程协调。文件级任务
按固定扇出上限分批提交，避免一次性打开过多文件。
"""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Iterable, TypeVar

from assetbuild.core.exceptions import ConfigError

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def available_workers() -> int:
    """可用核数减一，至少为 1"""
    return max(1, (os.cpu_count() or 1) - 1)


def size_worker_pool(configured: int = 0) -> int:
    """确定工作池大小，显式配置超过可用核数时抛 ConfigError"""
    limit = available_workers()
    if configured <= 0:
        return limit
    if configured > limit:
        raise ConfigError(
            f"max_workers={configured} 超过可用 CPU 核数限制 {limit}"
        )
    return configured


class WorkerPool:
    """带扇出上限的线程工作池"""

    def __init__(
        self, size: int, fanout: int = 20, required_modules: Iterable[str] = (),
    ) -> None:
        self.size = max(1, size)
        self.fanout = max(1, fanout)
        # 每个 worker 编译前需要可用的核心模块
        self.required_modules = tuple(required_modules)
        self._executor: ThreadPoolExecutor | None = ThreadPoolExecutor(
            max_workers=self.size, thread_name_prefix="assetbuild-worker",
        )
        self._slots = threading.BoundedSemaphore(self.fanout)
        logger.info(
            "工作池已启动: %d 个 worker, 扇出上限 %d, 核心模块 %s",
            self.size, self.fanout, list(self.required_modules),
        )

    @property
    def alive(self) -> bool:
        return self._executor is not None

    def submit(self, fn: Callable[..., R], *args: object) -> Future[R]:
        if self._executor is None:
            raise RuntimeError("工作池已关闭")
        self._slots.acquire()
        try:
            future = self._executor.submit(fn, *args)
        except RuntimeError:
            self._slots.release()
            raise
        future.add_done_callback(lambda _f: self._slots.release())
        return future

    def map(self, fn: Callable[[T], R], items: Iterable[T]) -> list[R]:
        """按输入顺序返回结果；任一任务抛出的异常在收集时原样抛出"""
        futures = [self.submit(fn, item) for item in items]
        return [f.result() for f in futures]

    def terminate(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
            logger.info("工作池已关闭")
