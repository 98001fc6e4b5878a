"""缓存与元数据文件统一读写工具

所有缓存文件、meta 文件的写入都经过 atomic_write：失败的构建
永远不会把上一次完整的缓存写成半截。
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# 配置文件最大大小限制 (10MB)
MAX_CONFIG_SIZE = 10 * 1024 * 1024


def atomic_write(path: Path, content: str | bytes) -> None:
    """原子写入文件：同目录临时文件 + os.replace

    异常:
        OSError: 写入或替换失败（临时文件会被清理）
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        if isinstance(content, bytes):
            with os.fdopen(fd, "wb") as f:
                f.write(content)
        else:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(content)
        os.replace(tmp, str(path))
    except Exception:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


def load_yaml(path: str | Path) -> dict[str, Any]:
    """读取 YAML/JSON 配置文件

    返回:
        dict: 文件不存在、为空或顶层不是字典时返回空字典

    异常:
        yaml.YAMLError: 格式错误
        ValueError: 文件超过 MAX_CONFIG_SIZE
    """
    p = Path(path)
    if not p.exists():
        return {}

    file_size = p.stat().st_size
    if file_size > MAX_CONFIG_SIZE:
        raise ValueError(
            f"配置文件过大: {p} ({file_size} 字节), 超过限制 {MAX_CONFIG_SIZE} 字节"
        )

    try:
        with open(p, encoding="utf-8") as f:
            result = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error("解析配置文件失败: %s, 错误: %s", path, e)
        raise
    except OSError as e:
        logger.error("读取文件失败: %s, 错误: %s", path, e)
        raise

    if result is None:
        return {}
    if not isinstance(result, dict):
        logger.warning(
            "%s 内容不是字典类型 (实际类型: %s)，返回空字典",
            path, type(result).__name__,
        )
        return {}
    return result


def save_yaml(path: str | Path, data: Any) -> None:
    content = yaml.dump(
        data, default_flow_style=False, allow_unicode=True, sort_keys=False,
    )
    atomic_write(Path(path), content)


def dump_json(data: Any, *, sort_keys: bool = True) -> str:
    """统一的 JSON 序列化格式，保证多次构建输出逐字节一致"""
    return json.dumps(data, ensure_ascii=False, indent=2, sort_keys=sort_keys)


def load_json(path: str | Path, default: Any = None) -> Any:
    """读取 JSON 文件，不存在时返回 default

    解析失败和 IO 错误照常抛出，由调用方决定是否降级。
    """
    p = Path(path)
    if not p.exists():
        return default
    with open(p, encoding="utf-8") as f:
        return json.load(f)


def save_json(path: str | Path, data: Any, *, sort_keys: bool = True) -> None:
    atomic_write(Path(path), dump_json(data, sort_keys=sort_keys))


def to_posix(path: str | Path) -> str:
    """统一使用正斜杠的相对路径作为缓存键"""
    return str(path).replace("\\", "/")
