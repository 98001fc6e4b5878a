"""单模块构建测试：文件管线各阶段、增量跳过、失败登记、库打包"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from assetbuild.core.packer import PACKED_MARKER
from assetbuild.services.cache import BuildCache
from assetbuild.services.module_builder import ModuleBuilder, is_library, walk_sources
from assetbuild.services.runtime import BuildRuntime


def _build(cfg, *, force: bool = False, rels: list[str] | None = None):
    """加载缓存 -> 构建第一个模块 -> 保存缓存"""
    cache = BuildCache(cfg, builder_hash="t")
    cache.load()
    runtime = BuildRuntime.create(cfg)
    try:
        builder = ModuleBuilder(cache, runtime, force=force)
        module = cache.modules[0]
        if rels is None:
            result = builder.build(module)
        else:
            cache.carry_over()
            result = builder.run_files(module, rels)
        cache.save()
    finally:
        runtime.close()
    return cache, result


class TestHelpers:
    def test_is_library(self) -> None:
        assert is_library("lib.js")
        assert is_library("page.ts")
        assert not is_library("_helper.js")
        assert not is_library("sub/lib.js")
        assert not is_library("style.less")

    def test_walk_skips_hidden(self, make_config, write) -> None:
        module = make_config().module_list()[0]
        write(module.path / "a.js", "")
        write(module.path / ".git/config", "")
        write(module.path / "sub/.hidden.js", "")
        write(module.path / "sub/b.js", "")
        assert walk_sources(module) == ["a.js", "sub/b.js"]


class TestFullBuild:
    def test_outputs(self, project) -> None:
        cfg = project()
        cache, result = _build(cfg)
        out = cfg.output_dir / "Mod"
        assert result.compiled == result.total == 9
        assert result.failed == 0
        for name in ("a.js", "b.js", "style.css", "style.less", "page.html", "img.png", "r.routes.js"):
            assert (out / name).is_file(), name
        assert not (out / "_vars.css").exists()
        assert (out / "img.png").read_bytes() == b"\x89PNG\r\n\x1a\n"
        assert ".a { color: @color; }" in (out / "style.css").read_text(encoding="utf-8")

    def test_cache_entries(self, project) -> None:
        cfg = project()
        cache, _ = _build(cfg)
        inputs = cache.current.input_paths
        assert inputs["Mod/style.less"]["output"] == ["Mod/style.css", "Mod/style.less"]
        assert inputs["Mod/_vars.less"]["output"] == []
        assert cache.current.dependencies["Mod/style.less"] == ["Mod/_vars.less"]

    def test_module_metadata(self, project) -> None:
        cfg = project()
        cache, _ = _build(cfg)
        mc = cache.module_cache("Mod")
        assert mc.get("componentsInfo")["Mod/a.js"] == {
            "name": "Mod/a", "path": "Mod/a.js", "deps": ["Mod/b"],
        }
        assert mc.get("componentsInfo")["Mod/style.less"]["name"] == "css!Mod/style"
        assert mc.get("staticTemplates")["Mod/page.html.tmpl"] == {
            "page": "page.html", "output": "Mod/page.html", "component": "Mod/a",
        }
        assert mc.get("routesInfo")["Mod/r.routes.js"] == {
            "output": "Mod/r.routes.js", "routes": {"/mod/": {"controller": "Mod/a"}},
        }

    def test_library_packed(self, project) -> None:
        cfg = project()
        cache, result = _build(cfg)
        assert result.libraries == ["Mod/lib"]
        text = (cfg.output_dir / "Mod/lib.js").read_text(encoding="utf-8")
        assert PACKED_MARKER in text
        assert "Mod__private_helper_func" in text
        mc = cache.module_cache("Mod")
        assert mc.get("packedLibraries")["Mod/lib.js"] == {
            "name": "Mod/lib", "modules": ["Mod/_private/helper"],
        }
        assert mc.get("componentsInfo")["Mod/lib.js"]["deps"] == []
        assert "Mod/_private/helper.js" in cache.current.dependencies["Mod/lib.js"]

    def test_pack_libraries_disabled(self, project) -> None:
        cfg = project(pack_libraries=False)
        _, result = _build(cfg)
        assert result.libraries == []
        text = (cfg.output_dir / "Mod/lib.js").read_text(encoding="utf-8")
        assert PACKED_MARKER not in text

    def test_release_outputs_go_to_cache_area(self, project) -> None:
        cfg = project(release=True)
        cache, _ = _build(cfg)
        build = cfg.cache_dir / "incremental_build" / "Mod"
        assert (build / "a.js").is_file()
        assert (build / "a.min.js").is_file()
        assert (build / "style.min.css").is_file()
        assert not (cfg.output_dir / "Mod").exists()
        assert PACKED_MARKER in (build / "lib.min.js").read_text(encoding="utf-8")


class TestIncremental:
    def test_unchanged_module_skipped(self, project) -> None:
        cfg = project()
        first, _ = _build(cfg)
        cache, result = _build(cfg)
        assert result.skipped
        assert result.compiled == 0
        assert cache.current.input_paths == first.current.input_paths
        assert cache.module_cache("Mod").data == first.module_cache("Mod").data

    def test_dependency_change_rebuilds_dependent(self, project) -> None:
        cfg = project()
        _build(cfg)
        root = Path(cfg.modules[0]["path"])
        (root / "_vars.less").write_text("@color: blue;\n", encoding="utf-8")
        cache, result = _build(cfg)
        assert not result.skipped
        assert result.compiled == 2
        assert cache.current.input_paths["Mod/a.js"]["output"] == ["Mod/a.js"]

    def test_private_change_repacks_library(self, project) -> None:
        cfg = project()
        _build(cfg)
        root = Path(cfg.modules[0]["path"])
        (root / "_private/helper.js").write_text(
            "define('Mod/_private/helper', [], function() {\n    return 3;\n});\n", encoding="utf-8",
        )
        _, result = _build(cfg)
        assert result.libraries == ["Mod/lib"]
        assert "return 3;" in (cfg.output_dir / "Mod/lib.js").read_text(encoding="utf-8")

    def test_deleted_file_reported(self, project) -> None:
        cfg = project()
        _build(cfg)
        (Path(cfg.modules[0]["path"]) / "b.js").unlink()
        cache, result = _build(cfg)
        assert result.deleted == ["Mod/b.js"]
        assert "Mod/b.js" not in cache.current.input_paths

    def test_force_recompiles(self, project) -> None:
        cfg = project()
        _build(cfg)
        cache, records = _build(cfg, force=True, rels=["a.js"])
        assert [r.key for r in records] == ["Mod/a.js"]
        assert cache.current.input_paths["Mod/a.js"]["output"] == ["Mod/a.js"]
        assert "Mod/b.js" in cache.current.input_paths


class TestFailures:
    def test_broken_import_recorded(self, project, write) -> None:
        cfg = project()
        write(Path(cfg.modules[0]["path"]) / "broken.less", "@import 'missing';\n")
        cache, result = _build(cfg)
        assert result.failed == 1
        assert "Mod/broken.less" in cache.current.files_with_errors
        assert not (cfg.output_dir / "Mod/broken.css").exists()

    def test_failed_file_retried(self, project, write) -> None:
        cfg = project()
        broken = write(Path(cfg.modules[0]["path"]) / "broken.less", "@import 'missing';\n")
        _build(cfg)
        cache, result = _build(cfg)
        assert not result.skipped
        assert result.failed == 1
        broken.write_text(".ok {}\n", encoding="utf-8")
        cache, result = _build(cfg)
        assert result.failed == 0
        assert (cfg.output_dir / "Mod/broken.css").is_file()

    @pytest.mark.parametrize("source", ["a.js", "b.js"])
    def test_other_files_unaffected(self, project, write, source: str) -> None:
        cfg = project()
        write(Path(cfg.modules[0]["path"]) / "broken.less", "@import 'missing';\n")
        _build(cfg)
        assert (cfg.output_dir / "Mod" / source).is_file()

    def test_parallel_modules_count_own_failures(self, make_config, write) -> None:
        """多个模块并发构建、其它线程同时登记失败时，各模块只统计自己的失败"""
        cfg = make_config(modules=("A", "B"))
        for m in cfg.modules:
            root = Path(m["path"])
            for i in range(20):
                write(root / f"broken{i}.less", "@import 'missing';\n")
            write(root / "ok.js", "")
        cache = BuildCache(cfg, builder_hash="t")
        cache.load()
        cache.current.files_with_errors.update(f"Other/x{i}.js" for i in range(50_000))
        runtime = BuildRuntime.create(cfg)
        stop = threading.Event()

        def mark_failures() -> None:
            i = 0
            while not stop.is_set():
                cache.mark_file_failed(f"Other/y{i}.js")
                i += 1

        marker = threading.Thread(target=mark_failures)
        marker.start()
        try:
            builder = ModuleBuilder(cache, runtime)
            with ThreadPoolExecutor(max_workers=2) as pool:
                results = list(pool.map(builder.build, cache.modules))
        finally:
            stop.set()
            marker.join()
            runtime.close()
        assert [r.failed for r in results] == [20, 20]
        assert builder.failed_keys("A") == sorted(f"A/broken{i}.less" for i in range(20))
        assert "B/broken0.less" in cache.current.files_with_errors
