"""构建领域数据模型

- Module: 配置中声明的接口模块，一次构建内不可变
- FileRecord: 文件流水线中传递的记录（按约定不可变，用 evolve 生成新记录）
- FileStatus: 变更检测结果
- LazyBundle / StyleTheme: 打包与主题元数据
- BuildMessage: 构建报告中的一条诊断
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from assetbuild.services.runtime import BuildRuntime

# 模块级产物（contents、本地化词典等）在缓存中的键前缀
ROOT_KEY = "@root"


@dataclass(frozen=True)
class Module:
    """接口模块"""

    name: str
    path: Path
    output: Path
    required: bool = False
    rebuild: bool = False
    templated: bool = False
    init_core: bool = False

    @property
    def folder_name(self) -> str:
        return self.path.name

    def key_of(self, rel_path: str) -> str:
        """文件在缓存中的键: <模块目录名>/<相对路径>"""
        return f"{self.folder_name}/{rel_path}"


class FileStatus(str, Enum):
    NEW = "new"
    MODIFIED = "modified"
    UNCHANGED = "unchanged"
    DELETED = "deleted"


@dataclass(frozen=True)
class FileRecord:
    """单个源文件在模块流水线中的记录

    outputs 为 输出相对路径 -> 文本，相对于构建输出根目录。
    """

    module: Module
    rel_path: str
    source: Path
    text: str = ""
    hash: str = ""
    status: FileStatus = FileStatus.NEW
    outputs: dict[str, str] = field(default_factory=dict)
    dependencies: tuple[str, ...] = ()
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return self.module.key_of(self.rel_path)

    @property
    def extension(self) -> str:
        return Path(self.rel_path).suffix

    @property
    def cached(self) -> bool:
        return self.status is FileStatus.UNCHANGED

    def evolve(self, **changes: Any) -> FileRecord:
        return dataclasses.replace(self, **changes)


@dataclass
class CompileMeta:
    """传给编译器的上下文，运行时服务显式传入而非全局变量"""

    module: Module
    source_path: Path
    release: bool = False
    runtime: BuildRuntime | None = None


@dataclass
class LazyBundle:
    """懒加载包：内部模块被打进宿主产物，首次访问时才求值"""

    name: str
    internal_modules: list[str] = field(default_factory=list)
    external_dependencies: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "internalModules": sorted(self.internal_modules),
            "externalDependencies": sorted(self.external_dependencies),
        }


@dataclass
class StyleTheme:
    """样式主题"""

    name: str
    module: str
    path: str
    modifier: str = ""
    config: dict[str, Any] = field(default_factory=dict)

    @property
    def joined_name(self) -> str:
        """合并主题文件名: 主题名[__修饰符]"""
        if not self.modifier:
            return self.name
        return f"{self.name}__{self.modifier.replace('/', '_')}"


@dataclass
class BuildMessage:
    """构建报告中的一条诊断信息"""

    level: str
    message: str
    file_path: str = ""
    module: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "level": self.level, "message": self.message,
            "file_path": self.file_path, "module": self.module,
        }
