"""样式主题收集测试"""

from __future__ import annotations

import logging
from pathlib import Path
from unittest.mock import MagicMock

from assetbuild.core.models import Module
from assetbuild.core.themes import (
    collect_themes,
    join_theme,
    joined_theme_name,
    parse_theme_module,
    theme_parts,
)


def _module(root: Path, name: str) -> Module:
    path = root / name
    path.mkdir(parents=True, exist_ok=True)
    return Module(name=name, path=path, output=root / "out" / name)


def _write(path: Path, text: str = "") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


class TestParseThemeModule:
    def test_simple(self) -> None:
        assert parse_theme_module("Controls-online-theme", ["Controls"]) == ("Controls", "online")

    def test_dashed_module_name(self) -> None:
        assert parse_theme_module("A-b-c-theme", ["A-b"]) == ("A-b", "c")

    def test_not_a_theme_module(self) -> None:
        assert parse_theme_module("Controls", ["Controls"]) is None
        assert parse_theme_module("Controls-theme", ["Controls"]) is None
        assert parse_theme_module("X-online-theme", ["Controls"]) is None


class TestCollectThemes:
    def test_legacy_theme(self, tmp_path) -> None:
        m = _module(tmp_path, "Mod")
        _write(m.path / "themes/online/online.less", "a{}")
        _write(m.path / "themes/online/theme.config.json", '{"tags": ["x"]}')
        sink = MagicMock()
        themes = collect_themes([m], sink, ["online"])
        assert len(themes) == 1
        assert themes[0].path == "Mod/themes/online/online.less"
        assert themes[0].config == {"tags": ["x"]}
        sink.add_style_theme.assert_called_once_with(themes[0])

    def test_theme_not_permitted(self, tmp_path, caplog) -> None:
        m = _module(tmp_path, "Mod")
        _write(m.path / "themes/dark/dark.less")
        with caplog.at_level(logging.ERROR):
            assert collect_themes([m], MagicMock(), ["online"]) == []
        assert "未允许的多主题" in caplog.text

    def test_name_folder_mismatch(self, tmp_path, caplog) -> None:
        m = _module(tmp_path, "Mod")
        _write(m.path / "themes/dark/other.less")
        with caplog.at_level(logging.ERROR):
            assert collect_themes([m], MagicMock(), ["dark"]) == []
        assert "不一致" in caplog.text

    def test_part_of_theme_is_not_an_error(self, tmp_path, caplog) -> None:
        m = _module(tmp_path, "Mod")
        _write(m.path / "themes/dark/dark.less")
        _write(m.path / "themes/dark/buttons.less")
        with caplog.at_level(logging.ERROR):
            themes = collect_themes([m], MagicMock(), ["dark"])
        assert [t.name for t in themes] == ["dark"]
        assert "不一致" not in caplog.text

    def test_deprecated_config_warns(self, tmp_path, caplog) -> None:
        m = _module(tmp_path, "Mod")
        _write(m.path / "themes.config.json", '{"old": true}')
        sink = MagicMock()
        with caplog.at_level(logging.WARNING):
            collect_themes([m], sink, [])
        assert "已废弃" in caplog.text
        sink.add_module_less_configuration.assert_called_once_with("Mod", {"old": True})

    def test_new_theme_modules(self, tmp_path) -> None:
        base = _module(tmp_path, "Controls")
        theme_mod = _module(tmp_path, "Controls-online-theme")
        _write(theme_mod.path / "_theme.less")
        _write(theme_mod.path / "dark/_theme.less")
        sink = MagicMock()
        themes = collect_themes([base, theme_mod], sink, [])
        assert sorted(t.modifier for t in themes) == ["", "dark"]
        sink.add_new_style_theme.assert_any_call(
            "Controls-online-theme", "dark",
            {"moduleName": "Controls", "themeName": "online"},
        )

    def test_theme_entry_outside_theme_module(self, tmp_path, caplog) -> None:
        m = _module(tmp_path, "Mod")
        _write(m.path / "_theme.less")
        with caplog.at_level(logging.ERROR):
            assert collect_themes([m], MagicMock(), []) == []
        assert "_theme.less" in caplog.text


class TestJoin:
    def test_theme_parts(self) -> None:
        outputs = [
            "T-online-theme/a.css", "T-online-theme/_b.css",
            "T-online-theme/a.min.css", "T-online-theme/sub/c.css",
            "T-online-theme/x.js",
        ]
        assert theme_parts("T-online-theme", "", outputs) == ["T-online-theme/a.css"]
        assert theme_parts("T-online-theme", "sub", outputs) == ["T-online-theme/sub/c.css"]

    def test_join_replaces_resource_root(self) -> None:
        text = join_theme([("a.css", "a{background:url(%{RESOURCE_ROOT}x.png)}")], "/res/")
        assert text == "/* a.css */\na{background:url(/res/x.png)}"

    def test_joined_name(self) -> None:
        assert joined_theme_name("online", "") == "online"
        assert joined_theme_name("online", "sub/dir") == "online__sub_dir"
