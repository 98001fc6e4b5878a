"""单模块编译元数据缓存

按属性分组、按文件键分片存放。未变更的文件通过 migrate 从上一次
构建的缓存整体复制过来，不再重新编译。
"""

from __future__ import annotations

import logging
import posixpath
from pathlib import Path
from typing import Any

from assetbuild.utils.file_io import load_json, save_json

logger = logging.getLogger(__name__)

PROPERTIES = (
    "componentsInfo",
    "markupCache",
    "esCompileCache",
    "svgCache",
    "routesInfo",
    "versionedModules",
    "cdnModules",
    "staticTemplates",
    "packedLibraries",
)


class ModuleCache:
    def __init__(self, name: str, data: dict[str, Any] | None = None) -> None:
        self.name = name
        self.data: dict[str, dict[str, Any]] = dict(data or {})
        self.fill_remaining_properties()

    def fill_remaining_properties(self) -> None:
        """老版本缓存缺少的属性补为空"""
        for prop in PROPERTIES:
            self.data.setdefault(prop, {})

    @staticmethod
    def path_for(cache_dir: Path, name: str) -> Path:
        return Path(cache_dir) / "modules-cache" / f"{name}.json"

    @classmethod
    def load(cls, cache_dir: Path, name: str) -> ModuleCache:
        path = cls.path_for(cache_dir, name)
        try:
            data = load_json(path, {})
        except (OSError, ValueError) as e:
            logger.info("模块缓存不可用: %s (%s)", path, e)
            data = {}
        return cls(name, data if isinstance(data, dict) else {})

    def save(self, cache_dir: Path) -> None:
        save_json(self.path_for(cache_dir, self.name), self.data)

    def get(self, prop: str) -> dict[str, Any]:
        return self.data[prop]

    def set(self, prop: str, key: str, value: Any) -> None:
        self.data[prop][key] = value

    def remove(self, key: str) -> None:
        for prop in PROPERTIES:
            self.data[prop].pop(key, None)

    def migrate(self, key: str, last: ModuleCache) -> None:
        """复制上一次构建中该文件的全部缓存条目"""
        for prop in PROPERTIES:
            if key in last.data.get(prop, {}):
                self.data[prop][key] = last.data[prop][key]

    def svg_packages(self) -> dict[str, list[str]]:
        """svg 按路径第二段分组: Mod/icons/a.svg -> icons"""
        packages: dict[str, list[str]] = {}
        for key in sorted(self.data["svgCache"]):
            parts = key.split("/")
            if len(parts) < 3:
                continue
            packages.setdefault(parts[1], []).append(posixpath.join(*parts[1:]))
        return packages
