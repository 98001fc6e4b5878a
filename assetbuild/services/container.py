"""服务容器 — 一次构建内共享的服务实例

所有服务通过容器懒加载获取，同一容器内的实例共享状态（缓存、工作池等）。
CLI 通过 get_container() 或显式构造 ServiceContainer(config) 获取服务。

依赖关系（→ 表示依赖）:
  cache      → config.module_list()
  runtime    → localizer（localization 打开时）
  reconciler → cache

用法:
    container = ServiceContainer(BuildConfig.from_file("build.yml"))
    cache = container.cache          # 懒加载
    container.close()                # 关闭工作池
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from assetbuild.core.config import BuildConfig
    from assetbuild.core.models import Module
    from assetbuild.services.cache import BuildCache
    from assetbuild.services.localization import DictionaryLocalizer
    from assetbuild.services.lock import ProcessLock
    from assetbuild.services.reconciler import OutputReconciler
    from assetbuild.services.runtime import BuildRuntime

logger = logging.getLogger(__name__)


class ServiceContainer:
    """懒加载服务容器"""

    def __init__(self, config: BuildConfig | None = None) -> None:
        self._instances: dict[str, object] = {}
        if config is None:
            from assetbuild.core.config import get_config
            config = get_config()
        self._config = config

    @property
    def config(self) -> BuildConfig:
        return self._config

    @property
    def modules(self) -> list[Module]:
        if "modules" not in self._instances:
            self._instances["modules"] = self._config.module_list()
        return self._instances["modules"]  # type: ignore[return-value]

    # ---- 服务层 ----

    @property
    def lock(self) -> ProcessLock:
        if "lock" not in self._instances:
            from assetbuild.services.lock import ProcessLock
            self._instances["lock"] = ProcessLock(self._config.cache_dir)
        return self._instances["lock"]  # type: ignore[return-value]

    @property
    def cache(self) -> BuildCache:
        if "cache" not in self._instances:
            from assetbuild.services.cache import BuildCache
            self._instances["cache"] = BuildCache(self._config, self.modules)
        return self._instances["cache"]  # type: ignore[return-value]

    @property
    def localizer(self) -> DictionaryLocalizer | None:
        if not self._config.localization:
            return None
        if "localizer" not in self._instances:
            from assetbuild.services.localization import DictionaryLocalizer
            self._instances["localizer"] = DictionaryLocalizer(self._config.cache_dir)
        return self._instances["localizer"]  # type: ignore[return-value]

    @property
    def runtime(self) -> BuildRuntime:
        if "runtime" not in self._instances:
            from assetbuild.services.runtime import BuildRuntime
            self._instances["runtime"] = BuildRuntime.create(self._config, self.localizer)
        return self._instances["runtime"]  # type: ignore[return-value]

    @property
    def reconciler(self) -> OutputReconciler:
        if "reconciler" not in self._instances:
            from assetbuild.services.reconciler import OutputReconciler
            self._instances["reconciler"] = OutputReconciler(
                self.cache, self._config.output_roots, self._config.fanout,
            )
        return self._instances["reconciler"]  # type: ignore[return-value]

    def close(self) -> None:
        """关闭运行时（工作池），可重复调用"""
        runtime = self._instances.get("runtime")
        if runtime is not None:
            runtime.close()  # type: ignore[attr-defined]


# ---- 全局单例 ----

_global: ServiceContainer | None = None
_global_lock = threading.Lock()


def get_container() -> ServiceContainer:
    """获取全局 ServiceContainer 单例（线程安全）"""
    global _global  # noqa: PLW0603
    if _global is not None:
        return _global
    with _global_lock:
        if _global is None:
            _global = ServiceContainer()
        return _global


def reset_container() -> None:
    """重置全局容器（仅用于测试）"""
    global _global  # noqa: PLW0603
    with _global_lock:
        _global = None
