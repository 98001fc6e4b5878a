"""BuildCache - 构建缓存门面

一次构建内加载一次、保存一次。last 为上一次构建的状态，current 为本次
构建逐步累积的状态；未变更的文件把 last 中的条目迁移到 current。

作废策略偏向安全：构建器版本、运行参数、模块列表等任何不兼容的变化都
触发整体作废（保留本地化词典子缓存），而不是报错退出。
"""

from __future__ import annotations

import copy
import hashlib
import logging
import os
import shutil
import time
from pathlib import Path
from typing import Any

import assetbuild
from assetbuild.core.change_detector import ChangeDetector, hash_path
from assetbuild.core.config import BuildConfig
from assetbuild.core.models import FileStatus, Module, StyleTheme
from assetbuild.services.cache.module_cache import ModuleCache
from assetbuild.services.cache.store import UNKNOWN_BUILDER, CacheStore
from assetbuild.utils.file_io import load_json, save_json

logger = logging.getLogger(__name__)

LOCK_SUFFIX = ".lockfile"
# 整体作废时保留的缓存子目录
PRESERVED_ENTRIES = frozenset(("temp-modules", "dictionary"))
REMOVAL_LIST = "output-files-to-remove.json"
# 运行参数比较时忽略的字段（单独比较或不影响产物）
_PARAMS_COMPARED_SEPARATELY = frozenset(("modules", "version", "criticalErrors"))


def compute_builder_hash() -> str:
    """构建器自身源码的哈希，升级构建器后缓存自动作废"""
    root = Path(assetbuild.__file__).parent
    digest = hashlib.sha1()  # nosec B324
    for path in sorted(root.rglob("*.py")):
        digest.update(path.relative_to(root).as_posix().encode("utf-8"))
        digest.update(path.read_bytes())
    return digest.hexdigest()


class BuildCache:
    """增量构建缓存"""

    def __init__(
        self, config: BuildConfig, modules: list[Module] | None = None,
        builder_hash: str | None = None,
    ) -> None:
        self.config = config
        self.cache_dir = config.cache_dir
        self.modules = modules if modules is not None else config.module_list()
        self.builder_hash = builder_hash or compute_builder_hash()
        self.start_time = time.time()
        self.last = CacheStore()
        self.current = CacheStore()
        self.previous_run_failed = False
        self.drop_markup_cache = False
        self.drop_less_cache = False
        self._critical_errors = False
        self._module_caches: dict[str, ModuleCache] = {}
        self._last_module_caches: dict[str, ModuleCache] = {}
        self._files_to_remove: list[str] = []
        self._by_folder = {m.folder_name: m for m in self.modules}
        self._by_name = {m.name: m for m in self.modules}
        self._detector: ChangeDetector | None = None

    # ------------------------------------------------------------------
    # 加载与作废
    # ------------------------------------------------------------------

    def load(self) -> None:
        """读取上一次缓存，失败按首次构建处理"""
        self.start_time = time.time()
        self.last = CacheStore.load(self.cache_dir)
        self._last_module_caches = {
            m.name: ModuleCache.load(self.cache_dir, m.name) for m in self.modules
        } if not self.last.empty else {}
        self.current = CacheStore()
        self._module_caches = {m.name: ModuleCache(m.name) for m in self.modules}
        self._detector = None

    def is_first_build(self) -> bool:
        return self.last.empty

    def cache_has_incompatible_changes(self, run_parameters: dict[str, Any]) -> bool:
        if not self.config.check_config or self.last.empty:
            return False
        last_params = self.last.run_parameters
        reasons: list[str] = []
        if self.previous_run_failed:
            reasons.append("上一次构建异常中断")
        if self.last.hash_of_builder == UNKNOWN_BUILDER:
            reasons.append("缓存缺少构建器版本")
        if last_params.get("criticalErrors"):
            reasons.append("上一次构建存在致命错误")
        if sorted(last_params.get("modules", [])) != sorted(run_parameters.get("modules", [])):
            reasons.append("模块列表变化")
        if self.last.hash_of_builder != self.builder_hash:
            reasons.append("构建器版本变化")
        missing = [m.name for m in self.modules if not m.output.exists()]
        if missing:
            reasons.append(f"模块产物目录缺失: {', '.join(missing)}")
        if bool(last_params.get("version")) != bool(run_parameters.get("version")):
            reasons.append("version 参数开关变化")
        for key in sorted(set(last_params) | set(run_parameters)):
            if key in _PARAMS_COMPARED_SEPARATELY:
                continue
            if last_params.get(key) != run_parameters.get(key):
                reasons.append(f"参数 {key} 变化")
        for reason in reasons:
            logger.info("缓存不兼容: %s", reason)
        return bool(reasons)

    def clear_cache_if_needed(self, run_parameters: dict[str, Any] | None = None) -> bool:
        """清理上次登记的待删产物；缓存不兼容时整体作废并返回 True"""
        params = run_parameters if run_parameters is not None else self.config.run_parameters()
        self._remove_listed_outputs()
        if self.cache_has_incompatible_changes(params):
            self._invalidate()
            return True
        return False

    def _invalidate(self) -> None:
        logger.info("缓存已整体作废，执行全量构建: %s", self.cache_dir)
        self.last = CacheStore()
        self._last_module_caches = {}
        if self.cache_dir.is_dir():
            for entry in self.cache_dir.iterdir():
                if entry.name.endswith(LOCK_SUFFIX) or entry.name in PRESERVED_ENTRIES:
                    continue
                if entry.is_dir():
                    shutil.rmtree(entry, ignore_errors=True)
                else:
                    entry.unlink(missing_ok=True)
        if self.config.clear_output:
            for root in self.config.output_roots:
                if root.exists() and root != self.cache_dir:
                    logger.info("清空输出目录: %s", root)
                    shutil.rmtree(root, ignore_errors=True)

    def _remove_listed_outputs(self) -> None:
        try:
            listed = load_json(self.cache_dir / REMOVAL_LIST, [])
        except (OSError, ValueError) as e:
            logger.info("待删除产物清单不可读，跳过: %s", e)
            return
        roots = [str(r) for r in self.config.output_roots]
        removed = 0
        for path in listed:
            if not any(path.startswith(r) for r in roots):
                continue
            try:
                os.remove(path)
                removed += 1
            except FileNotFoundError:
                continue
        if removed:
            logger.info("已清理上次登记的打包产物: %d 个", removed)

    # ------------------------------------------------------------------
    # 变更判定
    # ------------------------------------------------------------------

    def resolve_key(self, key: str) -> Path | None:
        """缓存键 -> 源文件路径；绝对路径键原样返回"""
        if os.path.isabs(key):
            return Path(key)
        folder, _, rel = key.partition("/")
        module = self._by_folder.get(folder)
        if module is None or not rel:
            return None
        return module.path / rel

    def key_for_path(self, path: Path) -> str:
        """源文件路径 -> 缓存键；不在任何模块内的文件以绝对路径为键"""
        resolved = Path(path).resolve()
        for module in self.modules:
            try:
                rel = resolved.relative_to(module.path.resolve())
            except ValueError:
                continue
            return module.key_of(rel.as_posix())
        return str(resolved)

    @property
    def detector(self) -> ChangeDetector:
        if self._detector is None:
            self._detector = ChangeDetector(
                self.last.input_paths,
                self.last.dependencies,
                self.last.files_with_errors,
                self.resolve_key,
                previous_build=not self.last.empty,
                hash_by_content=self.config.hash_by_content,
                drop_markup_cache=self.drop_markup_cache,
                drop_less_cache=self.drop_less_cache,
            )
        return self._detector

    def file_hash(self, path: Path) -> str:
        return hash_path(path, by_content=self.config.hash_by_content)

    def is_file_changed(self, module: Module, rel_path: str, current_hash: str) -> FileStatus:
        """判定文件状态并登记到本次缓存

        未变更的文件迁移上次的产物列表、依赖和模块缓存条目。
        """
        key = module.key_of(rel_path)
        status = self.detector.classify(key, current_hash)
        if status is FileStatus.UNCHANGED:
            last_entry = self.last.input_paths[key]
            self.current.input_paths[key] = {
                "hash": current_hash, "output": list(last_entry.get("output", [])),
            }
            if key in self.last.dependencies:
                self.current.dependencies[key] = list(self.last.dependencies[key])
            last_cache = self._last_module_caches.get(module.name)
            if last_cache is not None:
                self.module_cache(module.name).migrate(key, last_cache)
        else:
            self.current.input_paths[key] = {"hash": current_hash, "output": []}
        return status

    def reset_file(self, key: str, current_hash: str) -> None:
        """强制重建的文件：清空产物登记，等待重新写出"""
        self.current.input_paths[key] = {"hash": current_hash, "output": []}
        self.current.files_with_errors.discard(key)
        folder = key.split("/", 1)[0]
        module = self._by_folder.get(folder)
        if module is not None:
            self.module_cache(module.name).remove(key)

    def carry_over(self) -> None:
        """以上次缓存为本次起点（单文件重建只改动涉及的条目）"""
        self.current = CacheStore(
            hash_of_builder=self.last.hash_of_builder,
            start_build_time=self.last.start_build_time,
            input_paths={k: {"hash": v.get("hash", ""), "output": list(v.get("output", []))}
                         for k, v in self.last.input_paths.items()},
            dependencies={k: list(v) for k, v in self.last.dependencies.items()},
            files_with_errors=set(self.last.files_with_errors),
            themes_meta=copy.deepcopy(self.last.themes_meta),
            run_parameters=dict(self.last.run_parameters),
            module_dependencies=copy.deepcopy(self.last.module_dependencies),
        )
        for name in list(self._last_module_caches):
            self.migrate_module_cache(name)

    def deleted_files(self, module: Module, seen: set[str]) -> list[str]:
        return self.detector.deleted(module.folder_name, seen)

    def last_outputs(self, key: str) -> list[str]:
        return list(self.last.input_paths.get(key, {}).get("output", []))

    def add_output_file(self, key: str, output_rel: str, module_key: str = "") -> None:
        """登记产物；源文件键不存在时挂到模块级键下"""
        entry = self.current.input_paths.get(key)
        if entry is None:
            entry = self.current.input_paths.setdefault(module_key or key, {"hash": "", "output": []})
        if output_rel not in entry["output"]:
            entry["output"].append(output_rel)

    def migrate_module_outputs(self, key: str) -> None:
        """模块级产物本次未重新生成时沿用上次的登记"""
        if key in self.last.input_paths and key not in self.current.input_paths:
            self.current.input_paths[key] = dict(self.last.input_paths[key])

    def add_dependencies(self, key: str, dependencies: list[str]) -> None:
        if dependencies:
            self.current.dependencies[key] = sorted(set(dependencies))

    def mark_file_failed(self, key: str) -> None:
        self.current.files_with_errors.add(key)
        entry = self.current.input_paths.get(key)
        if entry is not None:
            entry["output"] = []

    def remove_file(self, key: str, module: Module | None = None) -> list[str]:
        """删除文件的全部缓存记录，返回它上次的产物"""
        outputs = self.last_outputs(key)
        for store in (self.last, self.current):
            store.input_paths.pop(key, None)
            store.dependencies.pop(key, None)
            store.files_with_errors.discard(key)
        if module is not None:
            self.module_cache(module.name).remove(key)
            last_cache = self._last_module_caches.get(module.name)
            if last_cache is not None:
                last_cache.remove(key)
        return outputs

    def dependents_of(self, key: str) -> list[str]:
        """上次构建中依赖 key 的文件（watch 模式单文件重建用）"""
        return sorted(k for k, deps in self.last.dependencies.items() if key in deps)

    # ------------------------------------------------------------------
    # 模块缓存与元数据
    # ------------------------------------------------------------------

    def module_cache(self, name: str) -> ModuleCache:
        if name not in self._module_caches:
            self._module_caches[name] = ModuleCache(name)
        return self._module_caches[name]

    def last_module_cache(self, name: str) -> ModuleCache | None:
        return self._last_module_caches.get(name)

    def migrate_module_cache(self, name: str) -> None:
        """整个模块未变更时沿用上次的模块缓存"""
        last = self._last_module_caches.get(name)
        if last is not None:
            self._module_caches[name] = ModuleCache(name, {
                k: dict(v) for k, v in last.data.items()
            })

    def add_module_less_configuration(self, module: str, config: dict[str, Any]) -> None:
        self.current.themes_meta["lessConfig"][module] = config

    def add_style_theme(self, theme: StyleTheme) -> None:
        self.current.themes_meta["themes"][f"{theme.module}/{theme.name}"] = {
            "name": theme.name, "module": theme.module,
            "path": theme.path, "config": theme.config,
        }

    def add_new_style_theme(
        self, theme_module: str, modifier: str, info: dict[str, str],
    ) -> None:
        module = self._by_name.get(theme_module)
        self.current.themes_meta["newThemes"][f"{theme_module}:{modifier}"] = {
            "themeModule": theme_module,
            "themeFolder": module.folder_name if module else theme_module,
            "modifier": modifier,
            "moduleName": info.get("moduleName", ""),
            "themeName": info.get("themeName", ""),
        }

    def get_themes_meta(self) -> dict[str, dict]:
        return self.current.themes_meta

    def get_module_dependencies(self) -> dict[str, Any]:
        data = self.current.module_dependencies
        return {
            "nodes": dict(data.get("nodes", {})),
            "links": dict(data.get("links", {})),
            "packedLibraries": dict(data.get("packedLibraries", {})),
        }

    def store_module_dependencies(self, graph: dict[str, Any]) -> None:
        self.current.module_dependencies = graph

    # ------------------------------------------------------------------
    # 待删除清单与保存
    # ------------------------------------------------------------------

    def add_files_to_remove(self, paths: list[str]) -> None:
        for p in paths:
            if p not in self._files_to_remove:
                self._files_to_remove.append(p)

    @property
    def files_to_remove(self) -> list[str]:
        return list(self._files_to_remove)

    def save_removal_list(self) -> None:
        save_json(self.cache_dir / REMOVAL_LIST, sorted(self._files_to_remove))

    def mark_cache_as_failed(self) -> None:
        self._critical_errors = True

    def save(self) -> None:
        """写回本次缓存（逐文件原子替换，builder-info.json 为提交点）"""
        self.current.hash_of_builder = self.builder_hash
        self.current.start_build_time = self.start_time
        params = self.config.run_parameters()
        if self._critical_errors:
            params["criticalErrors"] = True
        self.current.run_parameters = params
        CacheStore.drop_commit_point(self.cache_dir)
        for cache in self._module_caches.values():
            cache.save(self.cache_dir)
        self.current.save(self.cache_dir)
        logger.info(
            "缓存已保存: %d 个文件记录, %d 个失败文件",
            len(self.current.input_paths), len(self.current.files_with_errors),
        )
