"""assetbuild 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
"""

from __future__ import annotations

import os

import click

from assetbuild import __version__
from assetbuild.core.config import BuildConfig
from assetbuild.utils.logger import setup_logging


def _load_config(path: str, **overrides: object) -> BuildConfig:
    """读取配置文件并应用命令行覆盖项（值为 None 的覆盖项忽略）"""
    cfg = BuildConfig.from_file(path)
    for name, value in overrides.items():
        if value is not None:
            setattr(cfg, name, value)
    return cfg


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """assetbuild - 增量静态资源构建工具"""
    setup_logging(
        level=os.getenv("ASSETBUILD_LOG_LEVEL", "INFO"),
        json_output=os.getenv("ASSETBUILD_LOG_JSON", "") == "1",
    )


# 注册各领域子命令
from assetbuild.cli.cmd_build import register as _reg_build  # noqa: E402
from assetbuild.cli.cmd_misc import register as _reg_misc  # noqa: E402

_reg_build(main)
_reg_misc(main)
