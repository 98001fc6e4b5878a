"""构建运行时服务

替代全局注入的运行时：PrepareRuntime 创建，经 CompileMeta 显式传给
每次编译调用，TerminateWorkerPool / 收尾时关闭。

需要初始化核心时（本地化或模板编译），PrepareRuntime 先把 required 模块
编译到 <cache>/platform，外部编译器通过环境变量拿到核心目录和
required 模块列表。
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import threading
from dataclasses import dataclass, field
from pathlib import Path

from assetbuild.core.compilers import CompilerRegistry, output_name
from assetbuild.core.config import BuildConfig
from assetbuild.core.exceptions import CompileError
from assetbuild.core.models import CompileMeta, Module
from assetbuild.core.protocols import Localizer
from assetbuild.core.scheduler import WorkerPool, size_worker_pool
from assetbuild.utils.file_io import atomic_write, to_posix
from assetbuild.utils.logger import build_context

logger = logging.getLogger(__name__)

CORE_DIR = "platform"
ENV_CORE_ROOT = "ASSETBUILD_CORE_ROOT"
ENV_REQUIRED_MODULES = "ASSETBUILD_REQUIRED_MODULES"
_CORE_SCRIPTS = frozenset((".js", ".ts", ".es", ".tsx"))


@dataclass
class BuildRuntime:
    config: BuildConfig
    compilers: CompilerRegistry
    localizer: Localizer | None = None
    pool: WorkerPool | None = None
    required_modules: list[str] = field(default_factory=list)
    core_root: Path | None = None
    changed_outputs: list[str] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @classmethod
    def create(cls, config: BuildConfig, localizer: Localizer | None = None) -> BuildRuntime:
        compilers = CompilerRegistry.from_config(config.less, config.compilers)
        logger.info("构建运行时已就绪")
        return cls(
            config=config, compilers=compilers, localizer=localizer,
            required_modules=config.required_modules,
        )

    def start_pool(self) -> WorkerPool:
        if self.pool is None or not self.pool.alive:
            self.pool = WorkerPool(
                size_worker_pool(self.config.max_workers), self.config.fanout,
                required_modules=self.required_modules,
            )
        return self.pool

    # ==================================================================
    # 核心初始化
    # ==================================================================

    def prepare_core(self, modules: list[Module]) -> int:
        """把 required 模块编译到核心目录，返回本次写出的文件数

        目标文件不比源文件旧时跳过。单文件编译失败记错误后继续。
        """
        root = self.config.cache_dir / CORE_DIR
        self.core_root = root
        written = 0
        for module in modules:
            if not module.required:
                continue
            written += self._prepare_core_module(module, root / module.folder_name)
        logger.info("核心模块已就绪: %s (写出 %d 个文件)", ", ".join(self.required_modules), written)
        return written

    def _prepare_core_module(self, module: Module, dest: Path) -> int:
        written = 0
        for source in sorted(module.path.rglob("*")):
            rel = to_posix(source.relative_to(module.path))
            if not source.is_file() or any(p.startswith(".") for p in rel.split("/")):
                continue
            ext = source.suffix
            target = dest / (output_name(rel) if ext in _CORE_SCRIPTS else rel)
            if target.is_file() and target.stat().st_mtime >= source.stat().st_mtime:
                continue
            if ext not in _CORE_SCRIPTS:
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source, target)
                written += 1
                continue
            meta = CompileMeta(module=module, source_path=source, runtime=self)
            try:
                text = source.read_text(encoding="utf-8")
                result = self.compilers.get(ext).compile(text, rel, meta)
            except (CompileError, OSError, UnicodeDecodeError) as e:
                logger.error(
                    "核心模块编译失败: %s", e,
                    extra=build_context(module.name, str(source)),
                )
                continue
            atomic_write(target, result["development"]["text"])
            written += 1
        return written

    def compile_env(self) -> dict[str, str] | None:
        """外部编译器的环境变量；核心未初始化时沿用当前环境"""
        if self.core_root is None:
            return None
        env = dict(os.environ)
        env[ENV_CORE_ROOT] = str(self.core_root)
        env[ENV_REQUIRED_MODULES] = json.dumps(self.required_modules)
        return env

    def record_output(self, rel: str) -> None:
        """登记本次写出的产物（热更新通知用）"""
        with self._lock:
            self.changed_outputs.append(rel)

    def close(self) -> None:
        if self.pool is not None:
            self.pool.terminate()
            self.pool = None
