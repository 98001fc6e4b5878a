"""构建配置

配置文件为 YAML（JSON 是 YAML 子集，同样可用）。已知字段进入
BuildConfig，其余进入 extra。路径字段相对于配置文件所在目录解析。
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from assetbuild.core.exceptions import ConfigError
from assetbuild.core.models import Module
from assetbuild.utils.file_io import load_yaml

logger = logging.getLogger(__name__)

_REQUIRED = ("cache", "output", "modules")

# 不影响编译产物、变化时不需要作废缓存的字段
_VOLATILE_FIELDS = frozenset((
    "max_workers", "fanout", "watch_threshold", "hot_reload_port",
    "check_config", "clear_output", "extra", "modules", "version",
    "compiled",
))


@dataclass
class BuildConfig:
    """一次构建的全部参数"""

    cache: str = ""
    output: str = ""
    modules: list[dict[str, Any]] = field(default_factory=list)

    # 模式
    release: bool = False
    hash_by_content: bool = True
    check_config: bool = True
    clear_output: bool = False

    # 产物
    less: bool = True
    sources: bool = True
    contents: bool = True
    joined_meta: bool = False
    dependencies_graph: bool = True
    custom_pack: bool = False
    pack_libraries: bool = True
    pack_html: bool = False
    compress: bool = False
    version: str = ""

    # 本地化
    localization: bool = False
    localizations: list[str] = field(default_factory=list)
    default_localization: str = ""

    # 主题
    multi_themes: list[str] = field(
        default_factory=lambda: ["default", "online", "presto", "carry"],
    )

    # 外部编译器: 扩展名 -> 命令模板（含 {input}）
    compilers: dict[str, str] = field(default_factory=dict)

    # 已编译产物仓库（首次构建时补全模块依赖）
    compiled: str = ""

    # 并发
    max_workers: int = 0
    fanout: int = 20
    watch_threshold: int = 20
    hot_reload_port: int = 0

    extra: dict = field(default_factory=dict)

    @classmethod
    def from_file(cls, path: str | Path) -> BuildConfig:
        """从文件加载配置，必填字段缺失抛 ConfigError"""
        p = Path(path)
        if not p.is_file():
            raise ConfigError(f"配置文件不存在: {p}")
        data = load_yaml(p)
        cfg = cls.from_dict(data)
        cfg.resolve_paths(p.resolve().parent)
        return cfg

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BuildConfig:
        missing = [k for k in _REQUIRED if not data.get(k)]
        if missing:
            raise ConfigError(f"配置缺少必填字段: {', '.join(missing)}")
        known = {f.name for f in cls.__dataclass_fields__.values()}
        matched = {k: v for k, v in data.items() if k in known and k != "extra"}
        extra = {k: v for k, v in data.items() if k not in known}
        cfg = cls(**matched)
        cfg.extra = extra
        cfg.validate()
        return cfg

    def validate(self) -> None:
        if not isinstance(self.modules, list):
            raise ConfigError("modules 必须是列表")
        names: set[str] = set()
        for i, m in enumerate(self.modules):
            if not isinstance(m, dict) or not m.get("name") or not m.get("path"):
                raise ConfigError(f"modules[{i}] 缺少 name 或 path")
            if m["name"] in names:
                raise ConfigError(f"模块重复声明: {m['name']}")
            names.add(m["name"])
        if self.fanout < 1:
            raise ConfigError(f"fanout 必须为正数: {self.fanout}")
        if self.localization and not self.localizations:
            raise ConfigError("开启 localization 时必须配置 localizations")

    def resolve_paths(self, base: Path) -> None:
        """把相对路径统一解析为基于配置文件目录的绝对路径"""
        def _abs(value: str) -> str:
            return value if os.path.isabs(value) else str((base / value).resolve())

        self.cache = _abs(self.cache)
        self.output = _abs(self.output)
        if self.compiled:
            self.compiled = _abs(self.compiled)
        for m in self.modules:
            m["path"] = _abs(m["path"])

    @property
    def cache_dir(self) -> Path:
        return Path(self.cache)

    @property
    def output_dir(self) -> Path:
        return Path(self.output)

    @property
    def build_output(self) -> Path:
        """模块编译产物目录: release 模式先写入缓存区，再由 FinalizeRelease 发布"""
        if self.release:
            return self.cache_dir / "incremental_build"
        return self.output_dir

    @property
    def output_roots(self) -> list[Path]:
        """所有可能存在本次产物的根目录"""
        roots = [self.build_output]
        if self.output_dir != self.build_output:
            roots.append(self.output_dir)
        return roots

    @property
    def init_core(self) -> bool:
        """是否需要预先初始化核心：本地化或任一模块声明了 templated / initCore"""
        if self.localization:
            return True
        return any(
            m.get("templated") or m.get("initCore") or m.get("init_core")
            for m in self.modules
        )

    @property
    def required_modules(self) -> list[str]:
        return [m["name"] for m in self.modules if m.get("required")]

    def module_list(self) -> list[Module]:
        root = self.build_output
        result = []
        for m in self.modules:
            name = m["name"]
            result.append(Module(
                name=name,
                path=Path(m["path"]),
                output=root / Path(m["path"]).name,
                required=bool(m.get("required", False)),
                rebuild=bool(m.get("rebuild", False)),
                templated=bool(m.get("templated", False)),
                init_core=bool(m.get("initCore", m.get("init_core", False))),
            ))
        return result

    def run_parameters(self) -> dict[str, Any]:
        """写入 last_build_config.json 的运行参数"""
        data = {
            k: v for k, v in self.to_dict().items() if k not in _VOLATILE_FIELDS
        }
        data["modules"] = sorted(m["name"] for m in self.modules)
        data["version"] = self.version
        return data

    def to_dict(self) -> dict:
        return asdict(self)


_current: BuildConfig | None = None


def get_config() -> BuildConfig:
    """获取当前配置，未初始化时抛 ConfigError"""
    if _current is None:
        raise ConfigError("构建配置尚未初始化")
    return _current


def init_config(path: str | Path) -> BuildConfig:
    """从文件初始化全局配置"""
    global _current  # noqa: PLW0603
    _current = BuildConfig.from_file(path)
    logger.info("配置已加载: %s", path)
    return _current
