"""缓存目录中的持久化文件

builder-info.json           {hashOfBuilder, startBuildTime}
input-paths.json            {键: {hash, output: [产物相对路径...]}}
dependencies.json           {键: [依赖键...]}
files-with-errors.json      [键...]
themesMeta.json             主题元数据
last_build_config.json 运行参数
module-dependencies.json    依赖图
modules-cache/<模块>.json   单模块缓存（由 ModuleCache 读写）
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from assetbuild.utils.file_io import load_json, save_json

logger = logging.getLogger(__name__)

BUILDER_INFO = "builder-info.json"
INPUT_PATHS = "input-paths.json"
DEPENDENCIES = "dependencies.json"
FILES_WITH_ERRORS = "files-with-errors.json"
THEMES_META = "themesMeta.json"
RUN_PARAMETERS = "last_build_config.json"
MODULE_DEPENDENCIES = "module-dependencies.json"
MODULES_CACHE_DIR = "modules-cache"

UNKNOWN_BUILDER = "unknown"


def empty_themes_meta() -> dict[str, dict]:
    return {"themes": {}, "lessConfig": {}, "newThemes": {}}


@dataclass
class CacheStore:
    """一次构建的缓存状态（上一次的 last 或本次的 current）"""

    hash_of_builder: str = UNKNOWN_BUILDER
    start_build_time: float = 0.0
    input_paths: dict[str, dict[str, Any]] = field(default_factory=dict)
    dependencies: dict[str, list[str]] = field(default_factory=dict)
    files_with_errors: set[str] = field(default_factory=set)
    themes_meta: dict[str, dict] = field(default_factory=empty_themes_meta)
    run_parameters: dict[str, Any] = field(default_factory=dict)
    module_dependencies: dict[str, Any] = field(default_factory=dict)

    @property
    def empty(self) -> bool:
        return self.start_build_time == 0

    @classmethod
    def load(cls, cache_dir: Path) -> CacheStore:
        """读取缓存；任何读取或解析错误都视为没有上一次缓存"""
        cache_dir = Path(cache_dir)
        try:
            info = load_json(cache_dir / BUILDER_INFO, {})
            if not info:
                return cls()
            store = cls(
                hash_of_builder=info.get("hashOfBuilder", UNKNOWN_BUILDER),
                start_build_time=float(info.get("startBuildTime", 0)),
                input_paths=load_json(cache_dir / INPUT_PATHS, {}),
                dependencies=load_json(cache_dir / DEPENDENCIES, {}),
                files_with_errors=set(load_json(cache_dir / FILES_WITH_ERRORS, [])),
                themes_meta=load_json(cache_dir / THEMES_META, None) or empty_themes_meta(),
                run_parameters=load_json(cache_dir / RUN_PARAMETERS, {}),
                module_dependencies=load_json(cache_dir / MODULE_DEPENDENCIES, {}),
            )
        except (OSError, ValueError, TypeError, json.JSONDecodeError) as e:
            logger.info("缓存不可用，按首次构建处理: %s", e)
            return cls()
        logger.info("已加载缓存: %d 个文件记录", len(store.input_paths))
        return store

    @staticmethod
    def drop_commit_point(cache_dir: Path) -> None:
        """删除 builder-info.json：保存中途失败时下一次按首次构建处理"""
        try:
            (Path(cache_dir) / BUILDER_INFO).unlink()
        except FileNotFoundError:
            pass

    def save(self, cache_dir: Path) -> None:
        """逐个文件原子写入；先删除 builder-info.json，全部写完后最后写入作为提交点"""
        cache_dir = Path(cache_dir)
        self.drop_commit_point(cache_dir)
        save_json(cache_dir / INPUT_PATHS, self.input_paths)
        save_json(cache_dir / DEPENDENCIES, self.dependencies)
        save_json(cache_dir / FILES_WITH_ERRORS, sorted(self.files_with_errors))
        save_json(cache_dir / THEMES_META, self.themes_meta)
        save_json(cache_dir / RUN_PARAMETERS, self.run_parameters)
        save_json(cache_dir / MODULE_DEPENDENCIES, self.module_dependencies)
        save_json(cache_dir / BUILDER_INFO, {
            "hashOfBuilder": self.hash_of_builder,
            "startBuildTime": self.start_build_time,
        })

    def all_outputs(self) -> set[str]:
        result: set[str] = set()
        for entry in self.input_paths.values():
            result.update(entry.get("output", []))
        return result
