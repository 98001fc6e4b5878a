"""过期产物清理

过期产物 = 上一次构建的产物集合 - 本次构建写入或确认有效的产物集合，
再按扩展名规则展开派生文件（.min、.gz、.br 等）。删除以有界并发
执行，文件已不存在不算错误。只有这里会删除输出目录中的文件。
"""

from __future__ import annotations

import logging
import os
import posixpath
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from assetbuild.services.cache.build_cache import BuildCache

logger = logging.getLogger(__name__)

MINIFIABLE = frozenset((".js", ".css", ".wml", ".tmpl", ".xhtml", ".html"))
COMPRESSED_SUFFIXES = (".gz", ".br")
DEFAULT_CONCURRENCY = 20


def derived_siblings(rel: str) -> list[str]:
    """产物及其全部派生文件（含自身）"""
    stem, ext = posixpath.splitext(rel)
    base = [rel]
    if ext in MINIFIABLE and not stem.endswith(".min"):
        base.append(f"{stem}.min{ext}")
    if ext == ".json":
        base.extend((f"{stem}.json.js", f"{stem}.json.min.js"))
    result = list(base)
    for path in base:
        result.extend(f"{path}{suffix}" for suffix in COMPRESSED_SUFFIXES)
    return result


class OutputReconciler:
    def __init__(
        self, cache: BuildCache, roots: Iterable[Path],
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> None:
        self.cache = cache
        self.roots = [Path(r) for r in roots]
        self.concurrency = max(1, concurrency)

    def stale_outputs(self) -> list[str]:
        """过期产物的相对路径（已展开派生文件）"""
        current = self.cache.current.all_outputs()
        stale = self.cache.last.all_outputs() - current
        expanded: set[str] = set()
        for rel in stale:
            expanded.update(derived_siblings(rel))
        return sorted(expanded - current)

    def get_list_for_remove_from_output_dir(self) -> list[str]:
        """需要删除的绝对路径: 文件存在且早于本次构建开始时间"""
        result: list[str] = []
        for rel in self.stale_outputs():
            for root in self.roots:
                path = root / rel
                try:
                    st = os.lstat(path)
                except OSError:
                    continue
                if st.st_mtime < self.cache.start_time:
                    result.append(str(path))
        return result

    def remove_stale_outputs(self) -> int:
        paths = self.get_list_for_remove_from_output_dir()
        removed = self.remove(paths)
        logger.info("已删除过期产物: %d 个", removed)
        return removed

    def remove_outputs(self, rels: Iterable[str]) -> int:
        """删除指定产物及其派生文件（watch 模式删除源文件时使用）"""
        paths = []
        for rel in rels:
            for sibling in derived_siblings(rel):
                paths.extend(str(root / sibling) for root in self.roots)
        return self.remove(paths)

    def remove(self, paths: list[str]) -> int:
        if not paths:
            return 0
        with ThreadPoolExecutor(max_workers=self.concurrency) as pool:
            return sum(pool.map(_remove_one, paths))


def _remove_one(path: str) -> int:
    try:
        os.remove(path)
    except FileNotFoundError:
        return 0
    except OSError as e:
        logger.warning("删除过期产物失败: %s (%s)", path, e)
        return 0
    logger.debug("已删除: %s", path)
    _prune_empty_parent(Path(path).parent)
    return 1


def _prune_empty_parent(directory: Path) -> None:
    try:
        directory.rmdir()
    except OSError:
        pass
