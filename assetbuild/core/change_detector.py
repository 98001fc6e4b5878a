"""变更检测

根据上一次构建持久化的哈希索引判断文件状态。内容哈希是权威依据：
切换分支后时间戳不变、内容变了的情况也能识别。
"""

from __future__ import annotations

import base64
import hashlib
import logging
import os
from pathlib import Path
from typing import Callable

from assetbuild.core.models import FileStatus

logger = logging.getLogger(__name__)

# 依赖变化会传导到自身的扩展名
CACHED_EXTENSIONS = frozenset((".less", ".js", ".es", ".ts"))

# 标记缓存作废时需要重建的扩展名
MARKUP_EXTENSIONS = frozenset((".xhtml", ".wml", ".tmpl", ".ts", ".js"))

# 主题默认语言样式，始终重建
ALWAYS_REBUILT = frozenset(("en-US.less",))

KeyResolver = Callable[[str], "Path | None"]


def file_hash(content: bytes, *, by_content: bool = True, mtime: float = 0.0) -> str:
    """文件哈希: 内容的 sha1(base64)，关闭 by_content 时退化为修改时间"""
    if not by_content:
        return str(mtime)
    return base64.b64encode(hashlib.sha1(content).digest()).decode("ascii")  # nosec B324


def hash_path(path: Path, *, by_content: bool = True) -> str:
    if not by_content:
        return str(os.stat(path).st_mtime)
    return file_hash(path.read_bytes())


class ChangeDetector:
    """对比上一次构建的哈希索引与依赖表

    Args:
        last_inputs: 上次构建的 {键: {"hash": ..., "output": [...]}}
        last_dependencies: 上次构建的 {键: [依赖键...]}
        failed: 上次构建失败的文件键
        resolve: 把缓存键映射回源文件绝对路径，用于重新计算依赖的哈希
        previous_build: 是否存在可用的上一次构建
    """

    def __init__(
        self,
        last_inputs: dict[str, dict],
        last_dependencies: dict[str, list[str]],
        failed: set[str],
        resolve: KeyResolver,
        *,
        previous_build: bool = True,
        hash_by_content: bool = True,
        drop_markup_cache: bool = False,
        drop_less_cache: bool = False,
    ) -> None:
        self.last_inputs = last_inputs
        self.last_dependencies = last_dependencies
        self.failed = failed
        self.resolve = resolve
        self.previous_build = previous_build
        self.hash_by_content = hash_by_content
        self.drop_markup_cache = drop_markup_cache
        self.drop_less_cache = drop_less_cache
        # 本轮已判定的 {键: 是否变化}，依赖检查共享
        self._changes: dict[str, bool] = {}

    def classify(self, key: str, current_hash: str | None) -> FileStatus:
        """判定文件状态

        current_hash 为 None 表示文件已不在文件系统中。
        """
        known = key in self.last_inputs
        if current_hash is None:
            return FileStatus.DELETED
        if not known:
            self._changes[key] = True
            return FileStatus.NEW
        if self._is_changed(key, current_hash):
            return FileStatus.MODIFIED
        return FileStatus.UNCHANGED

    def deleted(self, module_prefix: str, seen: set[str]) -> list[str]:
        """上次构建存在、本次遍历未出现的文件键"""
        prefix = f"{module_prefix}/"
        return sorted(
            key for key in self.last_inputs
            if key.startswith(prefix) and key not in seen
        )

    def _is_changed(self, key: str, current_hash: str) -> bool:
        ext = os.path.splitext(key)[1]
        if not self.previous_build:
            return True
        if self.drop_markup_cache and ext in MARKUP_EXTENSIONS:
            return True
        if self.drop_less_cache and ext == ".less":
            return True
        if key in self.failed:
            return True

        hash_changed = self.last_inputs[key].get("hash", "") != current_hash
        if ext in CACHED_EXTENSIONS:
            self._changes[key] = hash_changed
        if hash_changed:
            return True

        if os.path.basename(key) in ALWAYS_REBUILT:
            return True

        if ext in CACHED_EXTENSIONS:
            for dep in self.all_dependencies(key):
                if self._dependency_changed(dep):
                    logger.debug("依赖变化触发重建: %s <- %s", key, dep)
                    return True
        return False

    def all_dependencies(self, key: str) -> list[str]:
        """上次构建记录的传递依赖（显式工作栈，无递归）"""
        result: list[str] = []
        seen = {key}
        stack = list(reversed(self.last_dependencies.get(key, [])))
        while stack:
            dep = stack.pop()
            if dep in seen:
                continue
            seen.add(dep)
            result.append(dep)
            stack.extend(reversed(self.last_dependencies.get(dep, [])))
        return result

    def _dependency_changed(self, dep: str) -> bool:
        if dep in self._changes:
            return self._changes[dep]
        last = self.last_inputs.get(dep)
        path = self.resolve(dep)
        if not last or not last.get("hash") or path is None or not path.exists():
            self._changes[dep] = True
            return True
        try:
            changed = hash_path(path, by_content=self.hash_by_content) != last["hash"]
        except OSError:
            changed = True
        self._changes[dep] = changed
        return changed
