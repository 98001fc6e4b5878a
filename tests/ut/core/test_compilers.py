"""内置编译器测试"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from assetbuild.core.compilers import (
    CommandCompiler,
    CompilerRegistry,
    CopyCompiler,
    StyleCompiler,
    min_name,
    minify_text,
    output_name,
)
from assetbuild.core.exceptions import CompileError
from assetbuild.core.models import CompileMeta, Module


def _meta(tmp_path: Path, rel: str, release: bool = False) -> CompileMeta:
    m = Module(name="Mod", path=tmp_path, output=tmp_path / "out")
    return CompileMeta(module=m, source_path=tmp_path / rel, release=release)


class TestNames:
    def test_output_name(self) -> None:
        assert output_name("a/b.less") == "a/b.css"
        assert output_name("a/b.ts") == "a/b.js"
        assert output_name("a/b.js") == "a/b.js"
        assert output_name("a/b.x", ".y") == "a/b.y"

    def test_min_name(self) -> None:
        assert min_name("a/b.css") == "a/b.min.css"

    def test_minify(self) -> None:
        assert minify_text("  a\n\n   b  \n") == "a\nb"


class TestCopyCompiler:
    def test_debug(self, tmp_path) -> None:
        result = CopyCompiler().compile("  x", "a.js", _meta(tmp_path, "a.js"))
        assert result == {"development": {"text": "  x"}}

    def test_release(self, tmp_path) -> None:
        result = CopyCompiler().compile("  x", "a.js", _meta(tmp_path, "a.js", True))
        assert result["release"]["text"] == "x"


class TestStyleCompiler:
    def test_inline_imports(self, tmp_path) -> None:
        (tmp_path / "_vars.less").write_text("@c: red;\n", encoding="utf-8")
        source = '@import "_vars";\na { color: @c; }\n'
        (tmp_path / "a.less").write_text(source, encoding="utf-8")
        result = StyleCompiler().compile(source, "a.less", _meta(tmp_path, "a.less"))
        assert "@c: red;" in result["development"]["text"]
        assert "@import" not in result["development"]["text"]
        assert result["dependencies"] == [str((tmp_path / "_vars.less").resolve())]

    def test_import_once(self, tmp_path) -> None:
        (tmp_path / "_v.less").write_text("v{}\n", encoding="utf-8")
        source = '@import "_v";\n@import "_v.less";\n'
        (tmp_path / "a.less").write_text(source, encoding="utf-8")
        result = StyleCompiler().compile(source, "a.less", _meta(tmp_path, "a.less"))
        assert result["development"]["text"].count("v{}") == 1

    def test_missing_import(self, tmp_path) -> None:
        source = '@import "missing";\n'
        with pytest.raises(CompileError, match="@import 文件不存在"):
            StyleCompiler().compile(source, "a.less", _meta(tmp_path, "a.less"))

    def test_release_strips_comments(self, tmp_path) -> None:
        source = "/* note */\na {\n  color: red;\n}\n"
        result = StyleCompiler().compile(source, "a.less", _meta(tmp_path, "a.less", True))
        assert result["release"]["text"] == "a {\ncolor: red;\n}"


class TestCommandCompiler:
    def test_stdout_is_result(self, tmp_path) -> None:
        (tmp_path / "a.ts").write_text("let a = 1;", encoding="utf-8")
        compiler = CommandCompiler(f"{sys.executable} -c \"print('ok')\"", ".js")
        result = compiler.compile("", "a.ts", _meta(tmp_path, "a.ts"))
        assert result["development"]["text"].strip() == "ok"

    def test_failure_becomes_compile_error(self, tmp_path) -> None:
        compiler = CommandCompiler("false")
        with pytest.raises(CompileError, match="失败"):
            compiler.compile("", "a.ts", _meta(tmp_path, "a.ts"))


class TestRegistry:
    def test_fallback_copy(self) -> None:
        assert isinstance(CompilerRegistry().get(".js"), CopyCompiler)

    def test_from_config(self) -> None:
        reg = CompilerRegistry.from_config(True, {".ts": "tsc {input}"})
        assert isinstance(reg.get(".less"), StyleCompiler)
        ts = reg.get(".ts")
        assert isinstance(ts, CommandCompiler)
        assert ts.output_suffix == ".js"
        assert reg.is_transforming(".ts")
        assert not reg.is_transforming(".js")

    def test_less_disabled(self) -> None:
        reg = CompilerRegistry.from_config(False, {})
        assert isinstance(reg.get(".less"), CopyCompiler)
