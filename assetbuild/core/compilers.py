"""内置编译器与注册表

- CopyCompiler: 原样输出，release 版本去掉缩进与空行
- StyleCompiler: .less，工作栈方式内联 @import，返回被内联文件作为依赖
- CommandCompiler: 调用配置的外部命令，stdout 即编译结果
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

from assetbuild.core.exceptions import CompileError, ExecutionError
from assetbuild.core.models import CompileMeta
from assetbuild.core.protocols import Compiler
from assetbuild.utils.shell import run_cmd

logger = logging.getLogger(__name__)

_IMPORT_RE = re.compile(r"""^\s*@import\s+(?:\([^)]*\)\s*)?["']([^"']+)["']\s*;\s*$""", re.M)
_BLOCK_COMMENT_RE = re.compile(r"/\*.*?\*/", re.S)

# 源扩展名 -> 产物扩展名
OUTPUT_SUFFIXES = {".less": ".css", ".ts": ".js", ".es": ".js", ".tsx": ".js"}


def minify_text(text: str) -> str:
    """行级压缩：去掉缩进与空行，保留换行以免破坏自动分号插入"""
    return "\n".join(line.strip() for line in text.splitlines() if line.strip())


def output_name(rel_path: str, suffix: str | None = None) -> str:
    p = Path(rel_path)
    new_suffix = suffix if suffix is not None else OUTPUT_SUFFIXES.get(p.suffix, p.suffix)
    return p.with_suffix(new_suffix).as_posix()


def min_name(rel_output: str) -> str:
    """a/b.css -> a/b.min.css"""
    p = Path(rel_output)
    return p.with_name(f"{p.stem}.min{p.suffix}").as_posix()


class CopyCompiler:
    output_suffix = ""

    def compile(self, source: str, rel_path: str, meta: CompileMeta) -> dict[str, Any]:
        result: dict[str, Any] = {"development": {"text": source}}
        if meta.release:
            result["release"] = {"text": minify_text(source)}
        return result


class StyleCompiler:
    """.less 编译（仅处理 @import 内联）"""

    output_suffix = ".css"

    def compile(self, source: str, rel_path: str, meta: CompileMeta) -> dict[str, Any]:
        dependencies: list[str] = []
        text = self._inline(source, meta.source_path, dependencies, meta)
        css = _IMPORT_RE.sub("", text).strip() + "\n"
        result: dict[str, Any] = {
            "development": {"text": css},
            "dependencies": dependencies,
        }
        if meta.release:
            result["release"] = {"text": minify_text(_BLOCK_COMMENT_RE.sub("", css))}
        return result

    @staticmethod
    def _resolve(base: Path, target: str) -> Path:
        path = (base.parent / target)
        if path.suffix not in (".less", ".css"):
            path = path.with_name(path.name + ".less")
        return path.resolve()

    def _inline(
        self, source: str, path: Path, dependencies: list[str], meta: CompileMeta,
    ) -> str:
        """展开 @import；同一文件只内联一次，缺失的导入是编译错误"""
        seen = {str(path.resolve())}
        # 栈元素: (当前文件路径, 待处理文本)
        pieces: list[str] = []
        stack: list[tuple[Path, str]] = [(path, source)]
        while stack:
            current, text = stack.pop()
            m = _IMPORT_RE.search(text)
            if m is None:
                pieces.append(text)
                continue
            pieces.append(text[:m.start()])
            rest = text[m.end():]
            target = self._resolve(current, m.group(1))
            stack.append((current, rest))
            if str(target) in seen:
                continue
            if not target.is_file():
                raise CompileError(
                    f"@import 文件不存在: {m.group(1)}",
                    file_path=str(meta.source_path), module=meta.module.name,
                )
            seen.add(str(target))
            dependencies.append(str(target))
            stack.append((target, target.read_text(encoding="utf-8")))
        return "".join(pieces)


class CommandCompiler:
    """外部命令编译器，命令模板中的 {input} 替换为源文件绝对路径"""

    def __init__(self, command: str, output_suffix: str = "") -> None:
        self.command = command
        self.output_suffix = output_suffix

    def compile(self, source: str, rel_path: str, meta: CompileMeta) -> dict[str, Any]:
        cmd = self.command.replace("{input}", str(meta.source_path))
        env = meta.runtime.compile_env() if meta.runtime is not None else None
        try:
            r = run_cmd(cmd, cwd=str(meta.module.path), env=env, label=f"编译 {rel_path}")
        except ExecutionError as e:
            raise CompileError(
                str(e), file_path=str(meta.source_path), module=meta.module.name,
            ) from e
        result: dict[str, Any] = {"development": {"text": r.stdout}}
        if meta.release:
            result["release"] = {"text": minify_text(r.stdout)}
        return result


class CompilerRegistry:
    """扩展名 -> 编译器；未注册的扩展名走 CopyCompiler"""

    def __init__(self) -> None:
        self._compilers: dict[str, Compiler] = {}
        self._fallback = CopyCompiler()

    def register(self, extension: str, compiler: Compiler) -> None:
        self._compilers[extension] = compiler

    def get(self, extension: str) -> Compiler:
        return self._compilers.get(extension, self._fallback)

    def is_transforming(self, extension: str) -> bool:
        """产物扩展名与源不同（源文件本身也可单独输出）"""
        return extension in OUTPUT_SUFFIXES

    @classmethod
    def from_config(cls, less: bool, commands: dict[str, str]) -> CompilerRegistry:
        registry = cls()
        if less:
            registry.register(".less", StyleCompiler())
        for ext, command in commands.items():
            suffix = OUTPUT_SUFFIXES.get(ext, "")
            registry.register(ext, CommandCompiler(command, output_suffix=suffix))
            logger.debug("注册外部编译器: %s -> %s", ext, command)
        return registry
