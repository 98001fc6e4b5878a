"""模块依赖元数据

每个文件在编译后登记一个组件描述（节点名、产物路径、依赖），
整个应用的 module-dependencies.json 由全部描述汇总而成。
"""

from __future__ import annotations

import logging
import posixpath
from typing import Any, Iterable

from assetbuild.core.amd import bare_name, parse_define, plugins_of
from assetbuild.core.graph import DependencyGraph

logger = logging.getLogger(__name__)

SUPPORTED_LINK_PLUGINS = frozenset((
    "is", "html", "css", "json", "xml", "text", "native-css", "browser",
    "optional", "i18n", "tmpl", "wml", "cdn", "preload", "remote",
))
# 只由运行时插件处理、不形成模块依赖边的插件
PLUGIN_ONLY = frozenset(("cdn", "preload", "remote"))
EXCLUDED_DEPENDENCIES = frozenset(("module", "require", "exports"))

MARKUP_PLUGINS = {".wml": "wml", ".tmpl": "tmpl"}


def links_for(dependencies: Iterable[str]) -> list[str]:
    """组件依赖 -> 依赖图的出边"""
    result: list[str] = []
    for dep in dependencies:
        if dep in EXCLUDED_DEPENDENCIES:
            continue
        plugins = plugins_of(dep)
        if any(p not in SUPPORTED_LINK_PLUGINS for p in plugins):
            continue
        if any(p in PLUGIN_ONLY for p in plugins):
            continue
        if dep not in result:
            result.append(dep)
    return result


def node_path(output_rel: str, release: bool) -> str:
    """节点指向的实际产物: release 下插入 .min，.json 以 .json.js 形式加载"""
    stem, ext = posixpath.splitext(output_rel)
    if ext in (".ts", ".es", ".tsx"):
        ext = ".js"
    suffix = ".min" if release else ""
    if ext == ".json":
        return f"{stem}.json{suffix}.js"
    return f"{stem}{suffix}{ext}"


def describe_script(output_rel: str, text: str, release: bool) -> dict[str, Any] | None:
    """JS 产物 -> 组件描述，非 AMD 模块返回 None"""
    amd = parse_define(text)
    if amd is None:
        return None
    name = amd.name or posixpath.splitext(output_rel)[0]
    return {
        "name": name,
        "path": node_path(output_rel, release),
        "deps": list(amd.dependencies),
    }


def describe_markup(output_rel: str, text: str, release: bool) -> dict[str, Any] | None:
    stem, ext = posixpath.splitext(output_rel)
    plugin = MARKUP_PLUGINS.get(ext)
    if plugin is None:
        return None
    amd = parse_define(text)
    return {
        "name": f"{plugin}!{stem}",
        "path": node_path(output_rel, release),
        "deps": list(amd.dependencies) if amd else [],
    }


def describe_style(output_rel: str, release: bool) -> dict[str, Any] | None:
    """CSS 产物 -> css! 节点，"_" 开头的片段不是独立节点"""
    if posixpath.basename(output_rel).startswith("_"):
        return None
    stem = posixpath.splitext(output_rel)[0]
    return {"name": f"css!{stem}", "path": node_path(output_rel, release), "deps": []}


def describe_text(output_rel: str) -> dict[str, Any]:
    return {"name": f"text!{output_rel}", "path": output_rel, "deps": []}


class ModuleDependenciesBuilder:
    """汇总组件描述为依赖图"""

    def __init__(self) -> None:
        self.graph = DependencyGraph()
        self.packed_libraries: dict[str, list[str]] = {}
        self._packed_owner: dict[str, str] = {}

    def add_component(self, info: dict[str, Any]) -> None:
        self.graph.merge(info["name"], info["path"], links_for(info.get("deps", [])))

    def add_packed_library(self, library: str, modules: list[str]) -> None:
        """登记库内联的私有模块，同一私有模块被多个库内联时告警"""
        for module in modules:
            owner = self._packed_owner.get(module)
            if owner is not None and owner != library:
                logger.warning(
                    "私有模块 %s 同时被打包进 %s 和 %s", module, owner, library,
                )
            self._packed_owner[module] = library
        self.packed_libraries[library] = sorted(modules)

    def fill_from_compiled(self, compiled: dict[str, Any]) -> int:
        """首次构建时用已编译产物仓库的元数据补全缺失的节点和边

        返回补全的节点数。
        """
        packed = set(self._packed_owner)
        filled = 0
        compiled_links = compiled.get("links", {})
        for name, node in compiled.get("nodes", {}).items():
            if name not in self.graph.nodes:
                self.graph.nodes[name] = dict(node)
                filled += 1
            links = self.graph.links.get(name)
            if (not links or bare_name(name) in packed) and name in compiled_links:
                self.graph.links[name] = list(compiled_links[name])
        return filled

    def to_json(self) -> dict[str, Any]:
        data = self.graph.to_graph()
        data["packedLibraries"] = {
            k: self.packed_libraries[k] for k in sorted(self.packed_libraries)
        }
        return data
