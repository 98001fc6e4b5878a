"""合并主题生成

新方案主题模块中同一修饰符目录下的样式产物拼接为
themes/<主题>[__修饰符].css，产物登记在应用根键下。
"""

from __future__ import annotations

import logging
import posixpath
from pathlib import Path

from assetbuild.core.compilers import min_name, minify_text
from assetbuild.core.models import ROOT_KEY
from assetbuild.core.themes import join_theme, joined_theme_name, theme_parts
from assetbuild.services.cache import BuildCache
from assetbuild.utils.file_io import atomic_write

logger = logging.getLogger(__name__)

THEMES_DIR = "themes"


def group_theme_parts(cache: BuildCache) -> dict[str, list[str]]:
    """合并主题输出路径 -> 组成它的样式产物（按主题模块名排序）"""
    outputs: list[str] = []
    for entry in cache.current.input_paths.values():
        outputs.extend(entry.get("output", []))

    groups: dict[str, list[str]] = {}
    new_themes = cache.get_themes_meta()["newThemes"]
    for key in sorted(new_themes):
        entry = new_themes[key]
        parts = theme_parts(entry["themeFolder"], entry["modifier"], outputs)
        if not parts:
            continue
        name = joined_theme_name(entry["themeName"], entry["modifier"])
        groups.setdefault(posixpath.join(THEMES_DIR, f"{name}.css"), []).extend(parts)
    return groups


def build_joined_themes(
    cache: BuildCache, build_output: Path, release: bool,
    only: set[str] | None = None,
) -> dict[str, list[str]]:
    """写出合并主题，返回 {合并主题: [组成部分]}（themes.json 内容）

    only 非空时只重写包含这些组成部分的主题（单文件重建）。
    """
    groups = group_theme_parts(cache)
    for rel, parts in groups.items():
        if only is not None and not only.intersection(parts):
            continue
        chunks = []
        for part in parts:
            try:
                chunks.append((part, (build_output / part).read_text(encoding="utf-8")))
            except FileNotFoundError:
                logger.warning("主题组成文件不存在，已跳过: %s", part)
        css = join_theme(chunks)
        atomic_write(build_output / rel, css)
        cache.add_output_file(ROOT_KEY, rel)
        if release:
            atomic_write(build_output / min_name(rel), minify_text(css))
            cache.add_output_file(ROOT_KEY, min_name(rel))
        logger.debug("合并主题已生成: %s (%d 个组成部分)", rel, len(parts))
    if groups:
        logger.info("合并主题完成: %d 个", len(groups))
    return groups
