"""CLI — 杂项命令（清理、报告）"""

from __future__ import annotations

import json
import shutil
import sys

import click

from assetbuild.cli import _load_config
from assetbuild.core.exceptions import BuilderError
from assetbuild.core.reporter import REPORT_FILE
from assetbuild.utils.file_io import load_json


def register(group: click.Group) -> None:
    group.add_command(clean)
    group.add_command(report)


# ---- 清理 ----

@click.command()
@click.option("--config", "-c", required=True, help="构建配置文件路径")
def clean(config: str) -> None:
    """删除缓存目录与输出目录"""
    try:
        cfg = _load_config(config)
    except BuilderError as e:
        click.echo(f"清理失败 [{e.code}]: {e}", err=True)
        sys.exit(1)
    for path in (cfg.cache_dir, cfg.output_dir):
        if path.exists():
            shutil.rmtree(path)
            click.echo(f"已删除: {path}")


# ---- 报告 ----

@click.command()
@click.option("--config", "-c", required=True, help="构建配置文件路径")
@click.option("--json", "as_json", is_flag=True, help="输出完整 JSON")
def report(config: str, as_json: bool) -> None:
    """显示上一次构建的报告"""
    try:
        cfg = _load_config(config)
    except BuilderError as e:
        click.echo(f"读取失败 [{e.code}]: {e}", err=True)
        sys.exit(1)
    data = load_json(cfg.cache_dir / REPORT_FILE, None)
    if data is None:
        click.echo("尚无构建报告")
        return
    if as_json:
        click.echo(json.dumps(data, ensure_ascii=False, indent=2))
        return
    summary = data.get("summary", {})
    click.echo(f"错误: {summary.get('errors', 0)}  警告: {summary.get('warnings', 0)}")
    for msg in data.get("messages", []):
        where = msg.get("file_path") or msg.get("module") or ""
        click.echo(f"  [{msg.get('level')}] {where} {msg.get('message')}".rstrip())
