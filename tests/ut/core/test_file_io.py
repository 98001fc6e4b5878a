"""file_io 工具测试"""

from __future__ import annotations

import pytest
import yaml

from assetbuild.utils import file_io
from assetbuild.utils.file_io import (
    atomic_write,
    dump_json,
    load_json,
    load_yaml,
    save_json,
    save_yaml,
)


class TestAtomicWrite:
    def test_text_and_bytes(self, tmp_path) -> None:
        atomic_write(tmp_path / "a/b.txt", "内容")
        atomic_write(tmp_path / "c.bin", b"\x00\x01")
        assert (tmp_path / "a/b.txt").read_text(encoding="utf-8") == "内容"
        assert (tmp_path / "c.bin").read_bytes() == b"\x00\x01"

    def test_no_temp_files_left(self, tmp_path) -> None:
        atomic_write(tmp_path / "x.json", "{}")
        assert [p.name for p in tmp_path.iterdir()] == ["x.json"]

    def test_failure_cleans_temp(self, tmp_path, monkeypatch) -> None:
        def boom(*_a):
            raise OSError("disk full")

        monkeypatch.setattr(file_io.os, "replace", boom)
        with pytest.raises(OSError, match="disk full"):
            atomic_write(tmp_path / "x.json", "{}")
        assert list(tmp_path.iterdir()) == []


class TestYaml:
    def test_roundtrip(self, tmp_path) -> None:
        save_yaml(tmp_path / "c.yml", {"a": [1, 2], "名称": "值"})
        assert load_yaml(tmp_path / "c.yml") == {"a": [1, 2], "名称": "值"}

    def test_missing_and_empty(self, tmp_path) -> None:
        assert load_yaml(tmp_path / "none.yml") == {}
        (tmp_path / "e.yml").write_text("", encoding="utf-8")
        assert load_yaml(tmp_path / "e.yml") == {}

    def test_non_dict(self, tmp_path) -> None:
        (tmp_path / "l.yml").write_text("- a\n- b\n", encoding="utf-8")
        assert load_yaml(tmp_path / "l.yml") == {}

    def test_invalid(self, tmp_path) -> None:
        (tmp_path / "bad.yml").write_text("a: [1, 2\n", encoding="utf-8")
        with pytest.raises(yaml.YAMLError):
            load_yaml(tmp_path / "bad.yml")

    def test_too_large(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setattr(file_io, "MAX_CONFIG_SIZE", 4)
        (tmp_path / "big.yml").write_text("a: 12345\n", encoding="utf-8")
        with pytest.raises(ValueError, match="配置文件过大"):
            load_yaml(tmp_path / "big.yml")


class TestJson:
    def test_default_when_missing(self, tmp_path) -> None:
        assert load_json(tmp_path / "none.json", {"x": 1}) == {"x": 1}

    def test_save_sorted(self, tmp_path) -> None:
        save_json(tmp_path / "d.json", {"b": 1, "a": 2})
        text = (tmp_path / "d.json").read_text(encoding="utf-8")
        assert text.index('"a"') < text.index('"b"')
        assert load_json(tmp_path / "d.json") == {"a": 2, "b": 1}

    def test_dump_json_stable(self) -> None:
        assert dump_json({"b": 1, "a": "中"}) == dump_json({"a": "中", "b": 1})
        assert "中" in dump_json({"a": "中"})
