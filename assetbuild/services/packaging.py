"""release 打包阶段

- FinalizeRelease: 构建目录 -> 输出目录，替换版本占位符
- PackHtml: 静态页面依赖闭包打成 <页面>.package.min.js / .css
- CustomPack: *.package.json 自定义包与懒加载包
- Gzip: 确定性的 .gz 副本

这些阶段写出的包文件登记到待删除清单，下一次构建开始时先清理再重新生成。
"""

from __future__ import annotations

import fnmatch
import gzip
import logging
import os
import posixpath
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from assetbuild.core.exceptions import ConfigError
from assetbuild.core.graph import DependencyGraph, check_lazy_bundles_for_cycles
from assetbuild.core.lazy_bundles import LazyBundleRegistry
from assetbuild.services.cache import BuildCache
from assetbuild.services.module_builder import (
    PACKAGE_CONFIG_SUFFIX,
    VERSION_STUB,
    walk_sources,
)
from assetbuild.utils.file_io import atomic_write, load_json, save_json

logger = logging.getLogger(__name__)

VERSIONED_EXTENSIONS = frozenset((".css", ".js", ".html", ".tmpl", ".xhtml", ".wml"))
GZIP_EXTENSIONS = frozenset((
    ".js", ".css", ".json", ".html", ".svg", ".wml", ".tmpl", ".xhtml",
))
PACKAGE_JS_SUFFIX = ".package.min.js"
PACKAGE_CSS_SUFFIX = ".package.min.css"
BUNDLES_FILE = "bundles.json"
BUNDLES_ROUTE_FILE = "bundlesRoute.json"
LAZY_BUNDLES_FILE = "lazy-bundles.json"
LAZY_BUNDLES_MAP_FILE = "lazy-bundles-map.json"


def _write_if_changed(path: Path, data: bytes) -> bool:
    try:
        if path.read_bytes() == data:
            return False
    except FileNotFoundError:
        pass
    atomic_write(path, data)
    return True


def _is_css_node(name: str) -> bool:
    return name.startswith("css!")


# =========================================================================
# FinalizeRelease
# =========================================================================

def finalize_release(build_output: Path, output: Path, version: str) -> int:
    """复制构建目录到输出目录，返回实际写入的文件数"""
    if build_output.resolve() == output.resolve():
        return 0
    written = 0
    for src in sorted(p for p in build_output.rglob("*") if p.is_file()):
        rel = src.relative_to(build_output)
        data = src.read_bytes()
        ext = src.suffix
        if ext in VERSIONED_EXTENSIONS and (".min." in src.name or ext == ".html"):
            data = data.replace(VERSION_STUB.encode(), version.encode("utf-8"))
        if _write_if_changed(output / rel, data):
            written += 1
    logger.info("release 产物已同步到输出目录: %d 个文件更新", written)
    return written


# =========================================================================
# PackHtml
# =========================================================================

def _concat(output: Path, nodes: list[dict[str, Any]]) -> str:
    chunks = []
    for node in nodes:
        path = output / node["path"]
        try:
            chunks.append(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.warning("打包的节点产物不存在，已跳过: %s", node["path"])
    return "\n".join(chunks)


def _inject(html: str, tag: str, before: str) -> str:
    index = html.rfind(before)
    if index < 0:
        return html + tag
    return html[:index] + tag + html[index:]


def pack_html(
    cache: BuildCache, graph: DependencyGraph, output: Path,
) -> list[str]:
    """为每个静态页面打包组件依赖闭包，返回写出的包文件绝对路径"""
    written: list[str] = []
    for module in cache.modules:
        pages = cache.module_cache(module.name).get("staticTemplates")
        for key in sorted(pages):
            entry = pages[key]
            component = entry.get("component")
            if not component:
                continue
            closure = [n for n in graph.closure([component]) if n in graph.nodes]
            js = [graph.nodes[n] for n in closure if not _is_css_node(n)]
            css = [graph.nodes[n] for n in closure if _is_css_node(n)]
            stem = entry["output"][:-len(".html")]
            html_path = output / entry["output"]
            if not html_path.is_file():
                logger.warning("静态页面不存在，跳过打包: %s", entry["output"])
                continue
            html = html_path.read_text(encoding="utf-8")
            if js:
                rel = stem + PACKAGE_JS_SUFFIX
                atomic_write(output / rel, _concat(output, js))
                html = _inject(html, f'<script src="/{rel}"></script>\n', "</body>")
                written.append(str(output / rel))
            if css:
                rel = stem + PACKAGE_CSS_SUFFIX
                atomic_write(output / rel, _concat(output, css))
                html = _inject(html, f'<link rel="stylesheet" href="/{rel}"/>\n', "</head>")
                written.append(str(output / rel))
            atomic_write(html_path, html)
            logger.debug("静态页面已打包: %s (%d 个节点)", entry["output"], len(closure))
    logger.info("静态页面打包完成: %d 个包文件", len(written))
    return written


# =========================================================================
# CustomPack
# =========================================================================

@dataclass
class PackageConfig:
    """*.package.json 描述的一个自定义包"""

    name: str
    module: str
    include: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)
    output: str = ""
    lazy: bool = False

    @classmethod
    def load(cls, module_folder: str, rel: str, path: Path) -> PackageConfig:
        data = load_json(path, {})
        if not isinstance(data, dict) or not data.get("include"):
            raise ConfigError(f"自定义包配置缺少 include: {module_folder}/{rel}")
        name = posixpath.join(module_folder, rel[:-len(PACKAGE_CONFIG_SUFFIX)])
        return cls(
            name=name,
            module=module_folder,
            include=list(data.get("include", [])),
            exclude=list(data.get("exclude", [])),
            output=data.get("output", ""),
            lazy=bool(data.get("lazy", False)),
        )

    def select(self, nodes: dict[str, Any]) -> list[str]:
        return sorted(
            name for name in nodes
            if any(fnmatch.fnmatchcase(name, p) for p in self.include)
            and not any(fnmatch.fnmatchcase(name, p) for p in self.exclude)
        )

    @property
    def output_stem(self) -> str:
        return posixpath.splitext(self.output)[0] if self.output else self.name


def find_package_configs(cache: BuildCache) -> list[PackageConfig]:
    configs = []
    for module in cache.modules:
        for rel in walk_sources(module):
            if rel.endswith(PACKAGE_CONFIG_SUFFIX):
                configs.append(PackageConfig.load(module.folder_name, rel, module.path / rel))
    return configs


class CustomPacker:
    """自定义包与懒加载包

    先注册全部懒加载包（归属冲突在任何写出之前抛 LazyBundleError），
    再逐个写出包文件，最后做懒加载包循环检测。
    """

    def __init__(self, cache: BuildCache, graph: DependencyGraph, output: Path) -> None:
        self.cache = cache
        self.graph = graph
        self.output = output
        self.registry = LazyBundleRegistry()
        self.cycles: dict[str, list[list[str]]] = {}
        self.bundles: dict[str, list[str]] = {}

    def run(self, configs: list[PackageConfig] | None = None) -> list[str]:
        configs = find_package_configs(self.cache) if configs is None else configs
        selections: list[tuple[PackageConfig, list[str]]] = []
        for config in configs:
            selected = config.select(self.graph.nodes)
            if not selected:
                logger.warning("自定义包没有匹配任何节点: %s", config.name)
                continue
            selections.append((config, selected))
            if config.lazy:
                internal = set(selected)
                externals = sorted({
                    dep for name in selected for dep in self.graph.links.get(name, [])
                    if dep not in internal
                })
                self.registry.add(config.name, selected, externals)

        written: list[str] = []
        bundles: dict[str, list[str]] = {}
        routes: dict[str, str] = {}
        for config, selected in selections:
            order = [n for n in self.graph.closure(selected) if n in selected]
            js = [n for n in order if not _is_css_node(n)]
            css = [n for n in order if _is_css_node(n)]
            for names, suffix in ((js, PACKAGE_JS_SUFFIX), (css, PACKAGE_CSS_SUFFIX)):
                if not names:
                    continue
                rel = config.output_stem + suffix
                atomic_write(
                    self.output / rel,
                    _concat(self.output, [self.graph.nodes[n] for n in names]),
                )
                written.append(str(self.output / rel))
                bundles[rel] = names
                for name in names:
                    routes[name] = rel
            logger.info("自定义包已生成: %s (%d 个节点)", config.name, len(order))

        self.bundles = bundles
        if len(self.registry):
            self.cycles = check_lazy_bundles_for_cycles(self.graph.links, self.registry)

        meta_files = {
            BUNDLES_FILE: bundles,
            BUNDLES_ROUTE_FILE: routes,
            LAZY_BUNDLES_FILE: self.registry.to_json(),
            LAZY_BUNDLES_MAP_FILE: self.registry.to_map(),
        }
        for name, data in meta_files.items():
            save_json(self.output / name, data)
            written.append(str(self.output / name))
        return written


# =========================================================================
# Gzip
# =========================================================================

def gzip_outputs(output: Path) -> list[str]:
    """为可压缩产物写出 .gz（mtime 固定为 0，内容确定），返回 .gz 路径"""
    written: list[str] = []
    for src in sorted(p for p in output.rglob("*") if p.is_file()):
        if src.suffix not in GZIP_EXTENSIONS:
            continue
        target = src.with_name(src.name + ".gz")
        try:
            if os.stat(target).st_mtime >= os.stat(src).st_mtime:
                written.append(str(target))
                continue
        except FileNotFoundError:
            pass
        atomic_write(target, gzip.compress(src.read_bytes(), mtime=0))
        written.append(str(target))
    logger.info("gzip 完成: %d 个文件", len(written))
    return written


def compressed_of(paths: list[str], gz_paths: list[str]) -> list[str]:
    """待删除文件对应的 .gz 也要登记删除"""
    listed = set(paths)
    return [p for p in gz_paths if p[:-len(".gz")] in listed]
