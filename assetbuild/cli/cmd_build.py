"""CLI — 构建命令（全量、单文件、watch）"""

from __future__ import annotations

import sys

import click

from assetbuild.cli import _load_config
from assetbuild.core.exceptions import BuilderError


def register(group: click.Group) -> None:
    group.add_command(build)
    group.add_command(watch)


def _fail(e: BuilderError) -> None:
    click.echo(f"构建失败 [{e.code}]: {e}", err=True)
    sys.exit(1)


@click.command()
@click.option("--config", "-c", required=True, help="构建配置文件路径")
@click.option("--file", "-f", "file_path", default="", help="只重建该文件及依赖它的文件")
@click.option("--release/--debug", default=None, help="覆盖配置中的 release 开关")
@click.option("--hot-reload-port", type=int, default=None, help="热更新服务端口")
def build(config: str, file_path: str, release: bool | None, hot_reload_port: int | None) -> None:
    """执行一次构建（文件处理错误只记录到报告，不影响退出码）"""
    from assetbuild.services.container import ServiceContainer
    from assetbuild.services.orchestrator import OnChangeWorkflow, Orchestrator

    try:
        cfg = _load_config(config, release=release, hot_reload_port=hot_reload_port)
        container = ServiceContainer(cfg)
        if file_path:
            report = OnChangeWorkflow(container).run(file_path)
        else:
            report = Orchestrator(container).run()
    except BuilderError as e:
        _fail(e)
        return
    done = sum(1 for s in report.steps if s.get("status") == "done")
    skipped = sum(1 for s in report.steps if s.get("status") == "skipped")
    click.echo(f"构建完成: {done} 个步骤执行, {skipped} 个步骤跳过")


@click.command()
@click.option("--config", "-c", required=True, help="构建配置文件路径")
@click.option("--threshold", "-t", type=int, default=None, help="超过该变更数时改为全量构建")
def watch(config: str, threshold: int | None) -> None:
    """监听模块源目录，变更时自动重建"""
    from assetbuild.services.watcher import WatchSession

    try:
        cfg = _load_config(config)
    except BuilderError as e:
        _fail(e)
        return
    click.echo(f"开始监听 {len(cfg.modules)} 个模块，Ctrl+C 退出")
    WatchSession(cfg, config, threshold=threshold).run_forever()
