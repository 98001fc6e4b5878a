"""单文件重建工作流测试"""

from __future__ import annotations

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from assetbuild.core.exceptions import LockError
from assetbuild.services.container import ServiceContainer
from assetbuild.services.lock import LOCK_FILE
from assetbuild.services.orchestrator import OnChangeWorkflow, Orchestrator


def _full(cfg) -> None:
    Orchestrator(ServiceContainer(cfg)).run()


def _on_change(cfg, path: Path):
    return OnChangeWorkflow(ServiceContainer(cfg)).run(str(path))


def _inputs(cfg) -> dict:
    return json.loads((cfg.cache_dir / "input-paths.json").read_text(encoding="utf-8"))


class TestOnChange:
    def test_dependents_rebuilt(self, project) -> None:
        cfg = project()
        _full(cfg)
        vars_less = Path(cfg.modules[0]["path"]) / "_vars.less"
        vars_less.write_text("@color: blue;\n", encoding="utf-8")

        report = _on_change(cfg, vars_less)
        assert report.success
        assert report.step_status("collect_themes") == "done"
        rebuild = next(s for s in report.steps if s["step"] == "rebuild")
        assert rebuild["files"] == 2
        css = (cfg.output_dir / "Mod/style.css").read_text(encoding="utf-8")
        assert "@color: blue;" in css
        assert report.steps[-1]["step"] == "unlock"

    def test_cache_updated(self, project) -> None:
        cfg = project()
        _full(cfg)
        before = _inputs(cfg)
        a = Path(cfg.modules[0]["path"]) / "a.js"
        a.write_text("define('Mod/a', [], function() { return 0; });\n", encoding="utf-8")
        report = _on_change(cfg, a)
        assert report.step_status("collect_themes") == "skipped"
        after = _inputs(cfg)
        assert after["Mod/a.js"]["hash"] != before["Mod/a.js"]["hash"]
        assert after["Mod/b.js"] == before["Mod/b.js"]

    def test_deleted_source(self, project) -> None:
        cfg = project()
        _full(cfg)
        b = Path(cfg.modules[0]["path"]) / "b.js"
        b.unlink()
        _on_change(cfg, b)
        assert not (cfg.output_dir / "Mod/b.js").exists()
        assert "Mod/b.js" not in _inputs(cfg)

    def test_private_change_repacks_library(self, project) -> None:
        cfg = project()
        _full(cfg)
        helper = Path(cfg.modules[0]["path"]) / "_private/helper.js"
        helper.write_text("define('Mod/_private/helper', [], function() {\n    return 7;\n});\n", encoding="utf-8")
        _on_change(cfg, helper)
        assert "return 7;" in (cfg.output_dir / "Mod/lib.js").read_text(encoding="utf-8")

    def test_notify_hot_reload(self, project) -> None:
        cfg = project(hot_reload_port=9999)
        _full(cfg)
        a = Path(cfg.modules[0]["path"]) / "a.js"
        with patch("assetbuild.services.orchestrator.on_change.post_json", return_value=True) as post:
            report = _on_change(cfg, a)
        url, payload = post.call_args.args
        assert url == "http://localhost:9999/changes"
        assert payload == {"changed": ["Mod/a.js"]}
        assert report.step_status("notify") == "done"

    def test_notify_skipped_without_port(self, project) -> None:
        cfg = project()
        _full(cfg)
        report = _on_change(cfg, Path(cfg.modules[0]["path"]) / "a.js")
        assert report.step_status("notify") == "skipped"

    def test_lock_held(self, project) -> None:
        cfg = project()
        _full(cfg)
        (cfg.cache_dir / LOCK_FILE).write_text(str(os.getppid()), encoding="utf-8")
        with pytest.raises(LockError):
            _on_change(cfg, Path(cfg.modules[0]["path"]) / "a.js")
        assert (cfg.cache_dir / LOCK_FILE).exists()
