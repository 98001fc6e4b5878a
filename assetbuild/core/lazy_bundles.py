"""懒加载包注册表

一个内部模块至多属于一个懒加载包。所有包在任何打包动作之前完成
注册，重复归属立即作为致命配置错误抛出。
"""

from __future__ import annotations

import logging
from typing import Iterator

from assetbuild.core.exceptions import LazyBundleError
from assetbuild.core.models import LazyBundle

logger = logging.getLogger(__name__)


class LazyBundleRegistry:
    def __init__(self) -> None:
        self._bundles: dict[str, LazyBundle] = {}
        self._owner: dict[str, str] = {}

    def add(
        self, name: str, internal_modules: list[str],
        external_dependencies: list[str],
    ) -> LazyBundle:
        """注册懒加载包，内部模块已属于其它包时抛 LazyBundleError"""
        for module in internal_modules:
            owner = self._owner.get(module)
            if owner is not None and owner != name:
                raise LazyBundleError(
                    f"模块 {module} 同时属于懒加载包 {owner} 和 {name}"
                )
        bundle = self._bundles.setdefault(name, LazyBundle(name=name))
        for module in internal_modules:
            if module not in bundle.internal_modules:
                bundle.internal_modules.append(module)
            self._owner[module] = name
        internal = set(bundle.internal_modules)
        for dep in external_dependencies:
            if dep not in internal and dep not in bundle.external_dependencies:
                bundle.external_dependencies.append(dep)
        logger.debug(
            "注册懒加载包 %s: %d 个内部模块, %d 个外部依赖",
            name, len(bundle.internal_modules), len(bundle.external_dependencies),
        )
        return bundle

    def bundle_of(self, module: str) -> str | None:
        return self._owner.get(module)

    def __iter__(self) -> Iterator[LazyBundle]:
        return iter(self._bundles[k] for k in sorted(self._bundles))

    def __len__(self) -> int:
        return len(self._bundles)

    def to_json(self) -> dict[str, dict[str, list[str]]]:
        """lazy-bundles.json 内容"""
        return {b.name: b.to_dict() for b in self}

    def to_map(self) -> dict[str, str]:
        """lazy-bundles-map.json 内容: 模块 -> 包名"""
        return {m: self._owner[m] for m in sorted(self._owner)}
