"""单模块构建

每个源文件依次经过 detect -> compile -> annotate -> pack_static_html ->
routes -> write 六个阶段；未变更的文件在 detect 之后退出，产物记录由
缓存迁移。全部文件处理完后对本次重新编译的库做私有模块内联。

文件级任务投递到运行时的工作池（受扇出上限约束），模块之间由编排器
并发调度。
"""

from __future__ import annotations

import logging
import posixpath
import re
import shutil
import threading
from dataclasses import dataclass, field
from pathlib import Path

from assetbuild.core.amd import bare_name, extract_routes, plugins_of
from assetbuild.core.compilers import min_name, output_name
from assetbuild.core.exceptions import CompileError
from assetbuild.core.models import CompileMeta, FileRecord, FileStatus, Module
from assetbuild.core.module_deps import (
    describe_markup,
    describe_script,
    describe_style,
    describe_text,
    node_path,
)
from assetbuild.core.packer import ModulePacker, is_private
from assetbuild.core.pipeline import FilePipeline
from assetbuild.services.cache import BuildCache
from assetbuild.services.runtime import BuildRuntime
from assetbuild.utils.file_io import atomic_write, to_posix
from assetbuild.utils.logger import build_context

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = frozenset((
    ".js", ".ts", ".es", ".tsx", ".less", ".css", ".wml", ".tmpl", ".xhtml",
    ".html", ".json", ".xml", ".svg", ".jstpl", ".s3mod", ".txt", ".md",
))
SCRIPT_SOURCES = frozenset((".js", ".ts", ".es", ".tsx"))
STATIC_PAGE_SUFFIX = ".html.tmpl"
PACKAGE_CONFIG_SUFFIX = ".package.json"
ROUTES_SUFFIX = ".routes.js"
VERSION_STUB = "BUILDER_VERSION_STUB"
CDN_MARKER = "/cdn/"

_COMPONENT_ATTR = re.compile(r"""data-component=["']([^"']+)["']""")
_PAGE_STUBS = {"%{APPLICATION_ROOT}": "/", "%{RESOURCE_ROOT}": "/"}


@dataclass
class ModuleResult:
    module: str
    total: int = 0
    compiled: int = 0
    failed: int = 0
    deleted: list[str] = field(default_factory=list)
    libraries: list[str] = field(default_factory=list)
    skipped: bool = False

    def to_dict(self) -> dict:
        return {
            "module": self.module, "total": self.total, "compiled": self.compiled,
            "failed": self.failed, "deleted": len(self.deleted),
            "libraries": list(self.libraries), "skipped": self.skipped,
        }


def walk_sources(module: Module) -> list[str]:
    """模块内全部源文件的相对路径（跳过隐藏文件和目录）"""
    result = []
    for path in module.path.rglob("*"):
        rel = path.relative_to(module.path)
        if any(part.startswith(".") for part in rel.parts):
            continue
        if path.is_file():
            result.append(to_posix(rel))
    return sorted(result)


def is_library(rel_path: str) -> bool:
    """模块根目录下的公开脚本即库"""
    stem, ext = posixpath.splitext(rel_path)
    return "/" not in rel_path and ext in SCRIPT_SOURCES and not stem.startswith("_")


class ModuleBuilder:
    """按模块运行文件管线并打包库

    Args:
        force: 跳过变更检测，全部文件重新编译（单文件重建模式）
    """

    def __init__(
        self, cache: BuildCache, runtime: BuildRuntime, *, force: bool = False,
    ) -> None:
        self.cache = cache
        self.runtime = runtime
        self.config = runtime.config
        self.force = force
        self.build_output = self.config.build_output
        # 模块名 -> 本次失败的文件键；文件任务在工作池线程中登记
        self._failed: dict[str, set[str]] = {}
        self._failed_lock = threading.Lock()
        self.pipeline = FilePipeline(
            [
                ("detect", self.detect),
                ("compile", self.compile),
                ("annotate", self.annotate),
                ("pack_static_html", self.pack_static_html),
                ("routes", self.routes),
                ("write", self.write),
            ],
            on_error=self._on_error,
        )

    # ==================================================================
    # 模块级
    # ==================================================================

    def build(self, module: Module) -> ModuleResult:
        rels = walk_sources(module)
        result = ModuleResult(module=module.name, total=len(rels))
        records = self.run_files(module, rels)
        seen = {module.key_of(rel) for rel in rels}
        result.deleted = self.cache.deleted_files(module, seen)
        for key in result.deleted:
            logger.info("源文件已删除: %s", key, extra=build_context(module.name, key))
        result.compiled = len(records)
        result.failed = len(self.failed_keys(module.name))

        if (not records and not result.deleted and not result.failed
                and not module.rebuild and not self.cache.is_first_build()):
            self.cache.migrate_module_cache(module.name)
            self.cache.migrate_module_outputs(module.name)
            result.skipped = True
            logger.info("模块无变更，跳过: %s", module.name)
            return result

        if self.config.release or self.config.pack_libraries:
            result.libraries = self.pack_libraries(module, records)
        self.cache.migrate_module_outputs(module.name)
        logger.info(
            "模块构建完成: %s (共 %d 个文件, 编译 %d, 失败 %d, 删除 %d)",
            module.name, result.total, result.compiled, result.failed,
            len(result.deleted),
        )
        return result

    def run_files(self, module: Module, rel_paths: list[str]) -> list[FileRecord]:
        records = [
            FileRecord(module=module, rel_path=rel, source=module.path / rel)
            for rel in rel_paths
        ]
        pool = self.runtime.start_pool()
        return [r for r in pool.map(self.pipeline.run, records) if r is not None]

    def _on_error(self, record: FileRecord, exc: Exception) -> None:
        self.cache.mark_file_failed(record.key)
        with self._failed_lock:
            self._failed.setdefault(record.module.name, set()).add(record.key)

    def failed_keys(self, module_name: str) -> list[str]:
        with self._failed_lock:
            return sorted(self._failed.get(module_name, ()))

    # ==================================================================
    # 文件管线阶段
    # ==================================================================

    def detect(self, record: FileRecord) -> FileRecord | None:
        file_hash = self.cache.file_hash(record.source)
        if self.force:
            self.cache.reset_file(record.key, file_hash)
            status = FileStatus.MODIFIED
        else:
            status = self.cache.is_file_changed(record.module, record.rel_path, file_hash)
        if status is FileStatus.UNCHANGED:
            return None
        meta = dict(record.meta)
        text = ""
        if record.extension in TEXT_EXTENSIONS:
            text = record.source.read_text(encoding="utf-8")
        else:
            meta["binary"] = True
        return record.evolve(text=text, hash=file_hash, status=status, meta=meta)

    def compile(self, record: FileRecord) -> FileRecord:
        rel = record.rel_path
        folder = record.module.folder_name
        name = posixpath.basename(rel)
        if record.meta.get("binary"):
            return record.evolve(outputs={posixpath.join(folder, rel): ""})
        if rel.endswith((STATIC_PAGE_SUFFIX, PACKAGE_CONFIG_SUFFIX)):
            return record
        if record.extension == ".less" and name.startswith("_"):
            # 样式片段只作为依赖参与变更判定
            return record

        compiler = self.runtime.compilers.get(record.extension)
        meta = CompileMeta(
            module=record.module, source_path=record.source,
            release=self.config.release, runtime=self.runtime,
        )
        result = compiler.compile(record.text, rel, meta)
        if "development" not in result:
            raise CompileError(
                "编译结果缺少 development 产物",
                file_path=str(record.source), module=record.module.name,
            )
        suffix = compiler.output_suffix or None
        dev_rel = posixpath.join(folder, output_name(rel, suffix))
        outputs = {dev_rel: result["development"]["text"]}
        if "release" in result:
            outputs[min_name(dev_rel)] = result["release"]["text"]
        source_rel = posixpath.join(folder, rel)
        if self.config.sources and dev_rel != source_rel:
            outputs[source_rel] = record.text

        dependencies = [
            self.cache.key_for_path(Path(p)) for p in result.get("dependencies", [])
        ]
        meta_bag = dict(record.meta, dev_output=dev_rel)
        if dev_rel != source_rel and record.extension in SCRIPT_SOURCES:
            meta_bag["es_compiled"] = True
        return record.evolve(
            outputs=outputs, dependencies=tuple(dependencies), meta=meta_bag,
        )

    def annotate(self, record: FileRecord) -> FileRecord:
        """登记组件描述、模板缓存等模块元数据"""
        dev_rel = record.meta.get("dev_output")
        if dev_rel is None:
            return record
        cache = self.cache.module_cache(record.module.name)
        key = record.key
        text = record.outputs[dev_rel]
        ext = posixpath.splitext(dev_rel)[1]
        release = self.config.release

        info = None
        if ext == ".js":
            info = describe_script(dev_rel, text, release)
        elif ext == ".css":
            info = describe_style(dev_rel, release)
        elif ext == ".jstpl":
            info = describe_text(dev_rel)
        elif ext in (".wml", ".tmpl"):
            markup = describe_markup(dev_rel, text, release)
            if markup is not None:
                cache.set("markupCache", key, markup)
        elif ext == ".svg":
            cache.set("svgCache", key, dev_rel)
        if info is not None:
            cache.set("componentsInfo", key, info)

        if record.meta.get("es_compiled"):
            cache.set("esCompileCache", key, {"hash": record.hash, "output": dev_rel})
        outputs = sorted(record.outputs)
        if any(VERSION_STUB in t for t in record.outputs.values()):
            cache.set("versionedModules", key, outputs)
        if any(CDN_MARKER in t for t in record.outputs.values()):
            cache.set("cdnModules", key, outputs)
        return record

    def pack_static_html(self, record: FileRecord) -> FileRecord:
        """*.html.tmpl -> 静态页面"""
        if not record.rel_path.endswith(STATIC_PAGE_SUFFIX):
            return record
        page = record.rel_path[:-len(".tmpl")]
        html = record.text
        for stub, value in _PAGE_STUBS.items():
            html = html.replace(stub, value)
        out_rel = posixpath.join(record.module.folder_name, page)
        match = _COMPONENT_ATTR.search(html)
        self.cache.module_cache(record.module.name).set("staticTemplates", record.key, {
            "page": page,
            "output": out_rel,
            "component": match.group(1) if match else "",
        })
        outputs = dict(record.outputs)
        outputs[out_rel] = html
        return record.evolve(outputs=outputs)

    def routes(self, record: FileRecord) -> FileRecord:
        dev_rel = record.meta.get("dev_output", "")
        if not dev_rel.endswith(ROUTES_SUFFIX):
            return record
        table = extract_routes(record.outputs[dev_rel])
        if not table:
            logger.warning(
                "路由文件未解析出任何路由", extra=build_context(record.module.name, record.key),
            )
        self.cache.module_cache(record.module.name).set(
            "routesInfo", record.key, {"output": dev_rel, "routes": table},
        )
        return record

    def write(self, record: FileRecord) -> FileRecord:
        key = record.key
        for rel, text in record.outputs.items():
            target = self.build_output / rel
            if record.meta.get("binary"):
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(record.source, target)
            else:
                atomic_write(target, text)
            self.cache.add_output_file(key, rel)
            self.runtime.record_output(rel)
        self.cache.add_dependencies(key, list(record.dependencies))
        return record

    # ==================================================================
    # 库打包
    # ==================================================================

    def pack_libraries(self, module: Module, records: list[FileRecord]) -> list[str]:
        """内联本次重新编译的库的私有依赖，返回打包成功的库名"""
        cache = self.cache.module_cache(module.name)
        key_of_node: dict[str, str] = {}
        for prop in ("componentsInfo", "markupCache"):
            for key, info in cache.get(prop).items():
                key_of_node[bare_name(info["name"])] = key

        packed: list[str] = []
        for record in records:
            if not is_library(record.rel_path) or "dev_output" not in record.meta:
                continue
            info = cache.get("componentsInfo").get(record.key)
            if info is None:
                continue
            library = info["name"]
            if not is_private(library) and self._pack_one(record, library, info, key_of_node):
                packed.append(library)
        return packed

    def _pack_one(
        self, record: FileRecord, library: str, info: dict, key_of_node: dict[str, str],
    ) -> bool:
        dev_rel = record.meta["dev_output"]
        variants = [(dev_rel, False)]
        if self.config.release and min_name(dev_rel) in record.outputs:
            variants.append((min_name(dev_rel), True))

        packed_modules: list[str] = []
        for rel, minified in variants:
            packer = ModulePacker(lambda dep, m=minified: self._load_private(dep, m))
            target = self.build_output / rel
            result = packer.pack(library, target.read_text(encoding="utf-8"))
            if not result.packed:
                continue
            atomic_write(target, result.compiled)
            if not minified:
                info = dict(info, deps=list(result.dependencies))
                packed_modules = result.packed_modules
        if not packed_modules:
            return False

        module_cache = self.cache.module_cache(record.module.name)
        module_cache.set("componentsInfo", record.key, info)
        module_cache.set("packedLibraries", record.key, {
            "name": library, "modules": sorted(packed_modules),
        })
        # 私有模块变化时库需要重新编译和打包
        private_keys = [
            key_of_node[bare_name(m)] for m in packed_modules if bare_name(m) in key_of_node
        ]
        existing = self.cache.current.dependencies.get(record.key, [])
        self.cache.add_dependencies(record.key, list(existing) + private_keys)
        return True

    def _load_private(self, dependency: str, minified: bool) -> str | None:
        bare = bare_name(dependency)
        extensions = [f".{p}" for p in plugins_of(dependency) if p in ("wml", "tmpl")]
        for ext in extensions or [".js"]:
            path = self.build_output / node_path(bare + ext, minified)
            if path.is_file():
                return path.read_text(encoding="utf-8")
        return None
