"""过期产物清理测试"""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import MagicMock

from assetbuild.services.cache import CacheStore
from assetbuild.services.reconciler import OutputReconciler, derived_siblings


def _cache(last: dict[str, list[str]], current: dict[str, list[str]], start: float) -> MagicMock:
    cache = MagicMock()
    cache.last = CacheStore(input_paths={k: {"hash": "", "output": v} for k, v in last.items()})
    cache.current = CacheStore(input_paths={k: {"hash": "", "output": v} for k, v in current.items()})
    cache.start_time = start
    return cache


def _touch(path: Path, mtime: float | None = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("x", encoding="utf-8")
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


class TestDerivedSiblings:
    def test_script(self) -> None:
        assert derived_siblings("Mod/a.js") == [
            "Mod/a.js", "Mod/a.min.js",
            "Mod/a.js.gz", "Mod/a.js.br", "Mod/a.min.js.gz", "Mod/a.min.js.br",
        ]

    def test_already_minified(self) -> None:
        assert derived_siblings("Mod/a.min.css") == [
            "Mod/a.min.css", "Mod/a.min.css.gz", "Mod/a.min.css.br",
        ]

    def test_json(self) -> None:
        result = derived_siblings("Mod/d.json")
        assert result[:3] == ["Mod/d.json", "Mod/d.json.js", "Mod/d.json.min.js"]
        assert "Mod/d.json.min.js.gz" in result

    def test_binary(self) -> None:
        assert derived_siblings("Mod/i.png") == ["Mod/i.png", "Mod/i.png.gz", "Mod/i.png.br"]


class TestStaleOutputs:
    def test_difference_expanded(self) -> None:
        cache = _cache(
            {"Mod/a.js": ["Mod/a.js"], "Mod/b.js": ["Mod/b.js", "Mod/b.min.js"]},
            {"Mod/b.js": ["Mod/b.js", "Mod/b.min.js"]},
            start=0,
        )
        stale = OutputReconciler(cache, []).stale_outputs()
        assert "Mod/a.js" in stale and "Mod/a.min.js.gz" in stale
        assert "Mod/b.js" not in stale

    def test_still_produced_by_other_source(self) -> None:
        """产物换了源文件仍然有效，不能删除"""
        cache = _cache({"Mod/a.ts": ["Mod/a.js"]}, {"Mod/a.js": ["Mod/a.js"]}, start=0)
        assert OutputReconciler(cache, []).stale_outputs() == []


class TestRemoval:
    def test_removes_old_files_in_all_roots(self, tmp_path: Path) -> None:
        build, out = tmp_path / "build", tmp_path / "out"
        old = 1_000_000.0
        _touch(build / "Mod/a.js", old)
        _touch(out / "Mod/a.min.js", old)
        _touch(out / "Mod/a.min.js.gz", old)
        _touch(out / "Mod/keep.js", old)
        cache = _cache({"Mod/a.js": ["Mod/a.js"]}, {}, start=old + 10)

        removed = OutputReconciler(cache, [build, out]).remove_stale_outputs()
        assert removed == 3
        assert not (out / "Mod/a.min.js").exists()
        assert (out / "Mod/keep.js").exists()
        # 清空后的目录一并删除
        assert not (build / "Mod").exists()

    def test_files_written_this_run_are_kept(self, tmp_path: Path) -> None:
        new = _touch(tmp_path / "Mod/a.js", 2_000_000.0)
        cache = _cache({"Mod/a.js": ["Mod/a.js"]}, {}, start=1_000_000.0)
        reconciler = OutputReconciler(cache, [tmp_path])
        assert reconciler.get_list_for_remove_from_output_dir() == []
        assert new.exists()

    def test_remove_outputs(self, tmp_path: Path) -> None:
        _touch(tmp_path / "Mod/a.css")
        _touch(tmp_path / "Mod/a.min.css")
        reconciler = OutputReconciler(_cache({}, {}, 0), [tmp_path], concurrency=0)
        assert reconciler.concurrency == 1
        assert reconciler.remove_outputs(["Mod/a.css"]) == 2
        assert reconciler.remove_outputs(["Mod/a.css"]) == 0

    def test_remove_nothing(self) -> None:
        assert OutputReconciler(_cache({}, {}, 0), []).remove([]) == 0
