"""外部协作者协议

编译器与本地化生成器都是黑盒：构建核心只依赖这里声明的接口。
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from assetbuild.core.models import CompileMeta, Module


class Compiler(Protocol):
    """编译器协议

    返回 {"development": {"text": ...}, "release": {"text": ...}}，
    release 可省略；可选 "dependencies" 为被内联文件的绝对路径列表。
    失败时抛出携带 file_path / module 的 CompileError。
    """

    output_suffix: str

    def compile(
        self, source: str, rel_path: str, meta: CompileMeta,
    ) -> dict[str, Any]:
        ...


class Localizer(Protocol):
    """本地化词典生成协议"""

    def generate(
        self, module: Module, locales: list[str], output_root: Path,
    ) -> dict[str, str]:
        """生成模块词典，返回 {词典键: 输出相对路径}"""
        ...
