"""应用元数据汇总与拆分

BuildModules 结束时由各模块缓存汇总依赖图；SaveJoinedMeta 阶段写出
每个模块的 contents / module-dependencies / routes-info /
static_templates / preload_urls 分片，joined_meta 打开时再写出应用根
目录下的合并文件。写出的文件全部登记到待删除清单。
"""

from __future__ import annotations

import logging
import posixpath
from pathlib import Path
from typing import Any

from assetbuild.core.compilers import minify_text
from assetbuild.core.contents import (
    build_contents,
    bundles_js,
    contents_js,
    contents_json_js,
    existing_module_dependencies,
    extract_preload_urls,
    router_js,
    split_contents,
    split_module_dependencies,
    split_routes,
    static_templates,
)
from assetbuild.core.module_deps import ModuleDependenciesBuilder
from assetbuild.services.cache import BuildCache
from assetbuild.utils.file_io import atomic_write, dump_json, load_json

logger = logging.getLogger(__name__)

CONTENTS_FILE = "contents.json"
MODULE_DEPENDENCIES_FILE = "module-dependencies.json"
ROUTES_INFO_FILE = "routes-info.json"
STATIC_TEMPLATES_FILE = "static_templates.json"
PRELOAD_URLS_FILE = "preload_urls.json"
THEMES_FILE = "themes.json"
MODULE_DESCRIPTOR_SUFFIX = ".s3mod"


def collect_module_dependencies(cache: BuildCache, compiled: str = "") -> dict[str, Any]:
    """汇总全部模块缓存中的组件描述为依赖图并存入缓存"""
    builder = ModuleDependenciesBuilder()
    for module in cache.modules:
        module_cache = cache.module_cache(module.name)
        for prop in ("componentsInfo", "markupCache"):
            for key in sorted(module_cache.get(prop)):
                builder.add_component(module_cache.get(prop)[key])
        for key in sorted(module_cache.get("packedLibraries")):
            entry = module_cache.get("packedLibraries")[key]
            builder.add_packed_library(entry["name"], entry["modules"])

    if compiled and cache.is_first_build():
        path = Path(compiled) / MODULE_DEPENDENCIES_FILE
        try:
            filled = builder.fill_from_compiled(load_json(path, {}))
        except (OSError, ValueError) as e:
            logger.warning("已编译产物的依赖图不可读: %s (%s)", path, e)
        else:
            logger.info("首次构建，从已编译产物补全依赖图节点: %d 个", filled)

    graph = builder.to_json()
    cache.store_module_dependencies(graph)
    logger.info(
        "依赖图汇总完成: %d 个节点, %d 个库",
        len(graph["nodes"]), len(graph["packedLibraries"]),
    )
    return graph


class MetaWriter:
    """写出元数据文件并登记到待删除清单"""

    def __init__(
        self, cache: BuildCache, root: Path, *,
        dictionary: dict[str, str] | None = None,
        themes: dict[str, list[str]] | None = None,
        bundles: dict[str, Any] | None = None,
    ) -> None:
        self.cache = cache
        self.config = cache.config
        self.root = root
        self.dictionary = dict(dictionary or {})
        self.themes = dict(themes or {})
        self.bundles = dict(bundles or {})
        self.written: list[str] = []

    # ---- 汇总 ----

    def contents(self) -> dict[str, Any]:
        components: dict[str, str] = {}
        html_names: dict[str, str] = {}
        for module in self.cache.modules:
            module_cache = self.cache.module_cache(module.name)
            for info in module_cache.get("componentsInfo").values():
                if "!" not in info["name"]:
                    components[info["name"]] = info["path"]
            for entry in module_cache.get("staticTemplates").values():
                if entry.get("component"):
                    html_names[f"js!{entry['component']}"] = entry["page"]
        config = self.config
        return build_contents(
            release=config.release,
            modules={m.name: m.folder_name for m in self.cache.modules},
            components=components,
            html_names=html_names,
            services=config.extra.get("services"),
            requirejs_paths=config.extra.get("requirejsPaths"),
            xml_contents=config.extra.get("xmlContents"),
            dictionary={k: True for k in self.dictionary},
            locales=config.localizations,
            default_locale=config.default_localization,
            version=config.version,
        )

    def routes(self) -> dict[str, Any]:
        table: dict[str, Any] = {}
        for module in self.cache.modules:
            for entry in self.cache.module_cache(module.name).get("routesInfo").values():
                table[entry["output"]] = entry["routes"]
        return dict(sorted(table.items()))

    def preload_urls(self) -> dict[str, list[str]]:
        result: dict[str, list[str]] = {}
        for module in self.cache.modules:
            descriptor = module.path / f"{module.folder_name}{MODULE_DESCRIPTOR_SUFFIX}"
            if not descriptor.is_file():
                continue
            urls = extract_preload_urls(descriptor.read_text(encoding="utf-8"))
            if urls:
                result[module.name] = urls
        return result

    # ---- 写出 ----

    def _write(self, rel: str, text: str) -> None:
        path = self.root / rel
        atomic_write(path, text)
        self.written.append(str(path))

    def _write_json(self, rel: str, data: Any) -> None:
        self._write(rel, dump_json(data))

    def write_all(self) -> list[str]:
        contents = self.contents()
        graph = self.cache.get_module_dependencies()
        routes = self.routes()
        preload = self.preload_urls()

        if self.config.contents:
            self.write_module_shards(contents, graph, routes, preload)
        if self.config.joined_meta:
            self.write_joined(contents, graph, routes, preload)

        self.cache.add_files_to_remove(self.written)
        self.cache.save_removal_list()
        logger.info("元数据写出完成: %d 个文件", len(self.written))
        return list(self.written)

    def write_module_shards(
        self, contents: dict[str, Any], graph: dict[str, Any],
        routes: dict[str, Any], preload: dict[str, list[str]],
    ) -> None:
        for module in self.cache.modules:
            folder = module.folder_name
            shard = split_contents(contents, module.name, folder)
            self._write_json(posixpath.join(folder, CONTENTS_FILE), shard)
            js = contents_json_js(folder, shard)
            self._write(posixpath.join(folder, "contents.json.js"), js)
            if self.config.release:
                self._write(posixpath.join(folder, "contents.json.min.js"), minify_text(js))

            if self.config.dependencies_graph:
                self._write_json(
                    posixpath.join(folder, MODULE_DEPENDENCIES_FILE),
                    split_module_dependencies(
                        graph, folder, lambda p: (self.root / p).exists(),
                    ),
                )
            module_routes = split_routes(routes, folder)
            if module_routes:
                self._write_json(posixpath.join(folder, ROUTES_INFO_FILE), module_routes)

            pages = [
                e["page"] for e in
                self.cache.module_cache(module.name).get("staticTemplates").values()
            ]
            if pages:
                self._write_json(
                    posixpath.join(folder, STATIC_TEMPLATES_FILE),
                    static_templates(pages, folder),
                )
            if module.name in preload:
                self._write_json(
                    posixpath.join(folder, PRELOAD_URLS_FILE),
                    {module.name: preload[module.name]},
                )

    def write_joined(
        self, contents: dict[str, Any], graph: dict[str, Any],
        routes: dict[str, Any], preload: dict[str, list[str]],
    ) -> None:
        self._write_json(CONTENTS_FILE, contents)
        self._write("contents.js", contents_js(contents))
        if self.config.dependencies_graph:
            existing = existing_module_dependencies(graph, lambda p: (self.root / p).exists())
            self._write_json(MODULE_DEPENDENCIES_FILE, {**graph, **existing})
        self._write_json(ROUTES_INFO_FILE, routes)
        self._write_json(PRELOAD_URLS_FILE, preload)
        self._write("bundles.js", bundles_js(self.bundles))
        self._write("router.js", router_js(routes))
        if self.themes:
            self._write_json(THEMES_FILE, self.themes)
