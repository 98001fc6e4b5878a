"""watch 模式

watchdog 监听全部模块源目录，事件在防抖窗口内累积后成批处理:
- 待处理文件数不超过阈值：逐个启动单文件重建子进程（同一时刻只有一个）
- 超过阈值：丢弃排队的单文件重建，终止正在运行的子进程，改为一次全量构建

已见过的文件及修改时间记在 changes.json，启动时据此补上停止期间的修改。
"""

from __future__ import annotations

import fnmatch
import logging
import subprocess
import threading
import time
from collections import deque
from pathlib import Path
from typing import Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from assetbuild.core.config import BuildConfig
from assetbuild.core.models import Module
from assetbuild.services.cache import ChangesStore
from assetbuild.services.module_builder import walk_sources
from assetbuild.utils.shell import spawn_build

logger = logging.getLogger(__name__)

DEFAULT_IGNORE_PATTERNS = (".*", "*~", "*.swp", "*.swo", "*.tmp", "node_modules")
DEFAULT_DEBOUNCE = 0.5

Spawner = Callable[[list[str]], subprocess.Popen]


class SourceEventHandler(FileSystemEventHandler):
    """过滤目录事件和临时文件，把文件路径交给 sink"""

    def __init__(
        self, root: Path, sink: Callable[[str], None],
        ignore_patterns: tuple[str, ...] = DEFAULT_IGNORE_PATTERNS,
    ) -> None:
        super().__init__()
        self.root = root
        self.sink = sink
        self.ignore_patterns = ignore_patterns

    def _should_ignore(self, path: str) -> bool:
        try:
            parts = Path(path).relative_to(self.root).parts
        except ValueError:
            parts = Path(path).parts
        return any(
            fnmatch.fnmatch(part, pattern)
            for part in parts for pattern in self.ignore_patterns
        )

    def _push(self, path: str) -> None:
        if not self._should_ignore(path):
            self.sink(str(path))

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._push(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._push(event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._push(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._push(event.src_path)
        self._push(event.dest_path)


class WatchSession:
    """watch 会话

    Args:
        config_path: 子进程构建使用的配置文件
        spawn: 启动子构建的函数，参数为 assetbuild 命令行参数
    """

    def __init__(
        self, config: BuildConfig, config_path: str, *,
        threshold: int | None = None,
        debounce: float = DEFAULT_DEBOUNCE,
        spawn: Spawner | None = None,
    ) -> None:
        self.config = config
        self.config_path = config_path
        self.threshold = config.watch_threshold if threshold is None else threshold
        self.debounce = debounce
        self.modules: list[Module] = config.module_list()
        self.changes = ChangesStore(config.cache_dir)
        self._spawn: Spawner = spawn or (lambda args: spawn_build(args))
        self._lock = threading.Lock()
        self._pending: list[str] = []
        self._last_event = 0.0
        self.queue: deque[str] = deque()
        self.child: subprocess.Popen | None = None
        self.child_kind = ""
        self._observer: Observer | None = None
        self._stopped = threading.Event()

    # ---- 事件 ----

    def add(self, path: str) -> None:
        with self._lock:
            if path not in self._pending:
                self._pending.append(path)
            self._last_event = time.monotonic()

    @property
    def pending(self) -> list[str]:
        with self._lock:
            return list(self._pending)

    def _module_of(self, path: Path) -> Module | None:
        for module in self.modules:
            try:
                path.relative_to(module.path)
            except ValueError:
                continue
            return module
        return None

    def _remember(self, path: str) -> None:
        p = Path(path)
        module = self._module_of(p)
        if module is None:
            return
        rel = p.relative_to(module.path).as_posix()
        try:
            mtime = p.stat().st_mtime
        except FileNotFoundError:
            self.changes.forget(str(module.path), rel)
            return
        self.changes.set_time(str(module.path), rel, mtime)

    def scan(self) -> list[str]:
        """对比 changes.json，返回停止期间修改过的文件"""
        self.changes.load()
        known = bool(self.changes.data)
        modified: list[str] = []
        for module in self.modules:
            for rel in walk_sources(module):
                mtime = (module.path / rel).stat().st_mtime
                if known and self.changes.is_changed(str(module.path), rel, mtime):
                    modified.append(str(module.path / rel))
                self.changes.set_time(str(module.path), rel, mtime)
        if modified:
            logger.info("检测到 watch 停止期间的修改: %d 个文件", len(modified))
        return modified

    # ---- 调度 ----

    def flush(self, now: float | None = None) -> str:
        """处理防抖窗口已结束的事件，返回 none / files / full"""
        now = time.monotonic() if now is None else now
        with self._lock:
            if not self._pending or now - self._last_event < self.debounce:
                return "none"
            batch, self._pending = self._pending, []
        for path in batch:
            self._remember(path)

        waiting = list(self.queue) + [p for p in batch if p not in self.queue]
        if len(waiting) > self.threshold:
            logger.info(
                "待处理变更 %d 个超过阈值 %d，改为全量构建", len(waiting), self.threshold,
            )
            self.queue.clear()
            self.terminate_child()
            self._start(["build", "-c", self.config_path], "full")
            return "full"
        self.queue.extend(p for p in batch if p not in self.queue)
        return "files"

    def poll(self) -> None:
        """子进程结束后启动队列中的下一个单文件重建"""
        if self.child is not None and self.child.poll() is None:
            return
        if self.child is not None:
            if self.child.returncode:
                logger.warning("子构建异常退出 (rc=%s)", self.child.returncode)
            self.child = None
            self.child_kind = ""
        if self.queue:
            path = self.queue.popleft()
            self._start(["build", "-c", self.config_path, "--file", path], "file")

    def _start(self, args: list[str], kind: str) -> None:
        self.child = self._spawn(args)
        self.child_kind = kind

    def terminate_child(self) -> None:
        if self.child is None or self.child.poll() is not None:
            self.child = None
            return
        logger.info("终止正在运行的子构建 (%s)", self.child_kind)
        self.child.terminate()
        try:
            self.child.wait(timeout=10)
        except subprocess.TimeoutExpired:
            self.child.kill()
            self.child.wait()
        self.child = None
        self.child_kind = ""

    # ---- 生命周期 ----

    def start(self) -> None:
        for path in self.scan():
            self.add(path)
        observer = Observer()
        for module in self.modules:
            observer.schedule(SourceEventHandler(module.path, self.add), str(module.path), recursive=True)
            logger.info("监听模块: %s (%s)", module.name, module.path)
        observer.start()
        self._observer = observer

    def stop(self) -> None:
        self._stopped.set()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
        self.terminate_child()
        self.changes.save()
        logger.info("watch 已停止")

    def run_forever(self, interval: float = 0.2) -> None:
        self.start()
        try:
            while not self._stopped.is_set():
                self.flush()
                self.poll()
                time.sleep(interval)
        except KeyboardInterrupt:
            logger.info("收到中断信号")
        finally:
            self.stop()
