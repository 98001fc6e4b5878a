"""构建日志配置

文本格式面向终端；JSON 格式面向 CI。单文件诊断通过 extra 携带
file_path / module 上下文，两种格式都会把它们带出来。
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

# 通过 logger.xxx(..., extra={...}) 注入的构建上下文字段
CONTEXT_FIELDS = ("module", "file_path")


def _context_of(record: logging.LogRecord) -> dict[str, str]:
    ctx: dict[str, str] = {}
    for name in CONTEXT_FIELDS:
        # LogRecord 自带 module 属性（源码文件名），构建上下文使用 build_ 前缀存放
        value = getattr(record, f"build_{name}", "")
        if value:
            ctx[name] = str(value)
    return ctx


class JSONFormatter(logging.Formatter):
    """结构化 JSON 日志格式器

    输出格式:
        {"timestamp": ..., "level": "WARNING", "logger": "assetbuild.x",
         "message": ..., "module": "Controls", "file_path": "Controls/a.less"}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_entry.update(_context_of(record))
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, ensure_ascii=False)


class ContextFormatter(logging.Formatter):
    """人类可读格式，末尾追加 [模块] 文件 上下文"""

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        ctx = _context_of(record)
        if ctx:
            where = ctx.get("file_path", "")
            if "module" in ctx:
                where = f"[{ctx['module']}] {where}".rstrip()
            text = f"{text} ({where})"
        return text


def build_context(module: str = "", file_path: str = "") -> dict[str, str]:
    """生成 logger 调用的 extra 参数

    示例:
        >>> logger.error("编译失败: %s", exc, extra=build_context("Controls", "a.less"))
    """
    return {"build_module": module, "build_file_path": file_path}


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """配置根日志器（输出到 stderr，重复调用不会叠加 handler）"""
    root = logging.getLogger()

    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stderr)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        fmt = "%(asctime)s [%(levelname)-7s] %(name)s: %(message)s"
        handler.setFormatter(ContextFormatter(fmt))
    root.addHandler(handler)


def reset_logging() -> None:
    """清理根日志器的全部 handler，常用于测试"""
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
