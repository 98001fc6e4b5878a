"""contents 清单与元数据拆分

整个应用的 contents.json 在打包阶段按模块拆分：每个模块的分片只包含
归属于该模块的键。归属规则:

- dictionary: 键以 "<模块>." 开头
- jsModules / requirejsPaths / xmlContents: 值路径的第一段（模块目录）
- htmlNames: 去掉 "js!" 前缀后的组件所属模块
- routes-info / module-dependencies: 文件或节点路径的第一段
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable

from assetbuild.utils.file_io import dump_json

logger = logging.getLogger(__name__)

_PRELOAD_SECTION = re.compile(r"<preload>(.*?)</preload>", re.DOTALL)
_QUOTED = re.compile(r"[\"']([^\"']+)[\"']")

# 每个分片原样携带的应用级字段
_SHARED_FIELDS = ("buildMode", "services", "availableLanguage", "defaultLanguage")


def first_segment(path: str) -> str:
    return path.lstrip("/").split("/", 1)[0]


def build_contents(
    *,
    release: bool,
    modules: dict[str, str],
    components: dict[str, str],
    html_names: dict[str, str],
    services: dict[str, Any] | None = None,
    requirejs_paths: dict[str, str] | None = None,
    xml_contents: dict[str, str] | None = None,
    dictionary: dict[str, bool] | None = None,
    locales: list[str] | None = None,
    default_locale: str = "",
    version: str = "",
) -> dict[str, Any]:
    """组装应用级 contents 清单

    Args:
        modules: 模块名 -> 模块目录名
        components: 组件名 -> 产物路径
        html_names: "js!组件名" -> 静态页面文件名
    """
    contents: dict[str, Any] = {
        "buildMode": "release" if release else "debug",
        "htmlNames": dict(sorted(html_names.items())),
        "jsModules": dict(sorted(components.items())),
        "modules": {name: {"path": folder} for name, folder in sorted(modules.items())},
        "requirejsPaths": dict(sorted((requirejs_paths or {}).items())),
        "services": dict(services or {}),
        "xmlContents": dict(sorted((xml_contents or {}).items())),
    }
    if dictionary:
        contents["dictionary"] = dict(sorted(dictionary.items()))
        contents["availableLanguage"] = list(locales or [])
        contents["defaultLanguage"] = default_locale
    if version:
        contents["buildnumber"] = version
    return contents


def split_contents(contents: dict[str, Any], module: str, folder: str) -> dict[str, Any]:
    """取出 contents 中归属于指定模块的分片"""
    shard: dict[str, Any] = {}
    for name in _SHARED_FIELDS:
        if name in contents:
            shard[name] = contents[name]

    modules = contents.get("modules", {})
    shard["modules"] = {module: modules[module]} if module in modules else {}

    js_modules = contents.get("jsModules", {})
    shard["jsModules"] = {
        k: v for k, v in js_modules.items() if first_segment(v) == folder
    }
    shard["requirejsPaths"] = {
        k: v for k, v in contents.get("requirejsPaths", {}).items()
        if first_segment(v) == folder
    }
    shard["xmlContents"] = {
        k: v for k, v in contents.get("xmlContents", {}).items()
        if first_segment(v) == folder
    }

    html_names: dict[str, str] = {}
    for key, page in contents.get("htmlNames", {}).items():
        component = key[3:] if key.startswith("js!") else key
        owner = first_segment(js_modules.get(component, component))
        if owner == folder:
            html_names[key] = page
    shard["htmlNames"] = html_names

    if "dictionary" in contents:
        pattern = re.compile(rf"^({re.escape(module)})(\.)")
        shard["dictionary"] = {
            k: v for k, v in contents["dictionary"].items() if pattern.match(k)
        }
    if "buildnumber" in contents:
        shard["buildnumber"] = f"%{{MODULE_VERSION_STUB={module}}}"
    return shard


def split_by_owner(
    data: dict[str, Any], folder: str, owner_of: Callable[[str, Any], str],
) -> dict[str, Any]:
    return {k: v for k, v in data.items() if owner_of(k, v) == folder}


def existing_module_dependencies(
    graph: dict[str, Any], exists: Callable[[str], bool],
    folder: str | None = None,
) -> dict[str, Any]:
    """过滤依赖图：产物文件缺失的节点告警并跳过；给定 folder 时只保留该目录的节点"""
    nodes: dict[str, Any] = {}
    links: dict[str, list[str]] = {}
    for name, node in graph.get("nodes", {}).items():
        path = node.get("path", "")
        if folder is not None and first_segment(path) != folder:
            continue
        if not exists(path):
            logger.warning("依赖图节点 %s 的产物不存在，已跳过: %s", name, path)
            continue
        nodes[name] = node
        if name in graph.get("links", {}):
            links[name] = graph["links"][name]
    return {"links": links, "nodes": nodes}


def split_module_dependencies(
    graph: dict[str, Any], folder: str, exists: Callable[[str], bool],
) -> dict[str, Any]:
    """拆分依赖图：节点按产物路径归属"""
    return existing_module_dependencies(graph, exists, folder)


def split_routes(routes: dict[str, Any], folder: str) -> dict[str, Any]:
    return split_by_owner(routes, folder, lambda k, _v: first_segment(k))


def extract_preload_urls(descriptor: str) -> list[str]:
    """模块描述文件 <preload>...</preload> 段中的引号字符串，保持顺序"""
    urls: list[str] = []
    for section in _PRELOAD_SECTION.findall(descriptor):
        for url in _QUOTED.findall(section):
            if url not in urls:
                urls.append(url)
    return urls


def static_templates(pages: list[str], folder: str) -> dict[str, str]:
    return {page: f"{folder}/{page}" for page in sorted(pages)}


def contents_js(contents: dict[str, Any]) -> str:
    return f"contents={json.dumps(contents, ensure_ascii=False, sort_keys=True)};"


def contents_json_js(folder: str, contents: dict[str, Any]) -> str:
    body = json.dumps(contents, ensure_ascii=False, sort_keys=True)
    return f"define('{folder}/contents.json',[],function(){{return {body};}});"


def bundles_js(bundles: dict[str, Any]) -> str:
    return f"bundles={json.dumps(bundles, ensure_ascii=False, sort_keys=True)};"


def router_js(routes: dict[str, Any]) -> str:
    """路由表: url -> 控制器，跨文件后写覆盖前写"""
    table: dict[str, Any] = {}
    for file_key in sorted(routes):
        for url, info in routes[file_key].items():
            table[url] = info.get("controller") if isinstance(info, dict) else info
    body = dump_json(table)
    return f"define('router', [], function() {{ return {body}; }});"
