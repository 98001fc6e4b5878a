"""watch 模式的 changes.json

{模块路径: {"files": {文件路径: {"time": 修改时间}}}}
保存时丢弃本轮没有 mark_exists 的条目（以省略代替删除标记）。
"""

from __future__ import annotations

import logging
from pathlib import Path

from assetbuild.utils.file_io import load_json, save_json

logger = logging.getLogger(__name__)

CHANGES_FILE = "changes.json"


class ChangesStore:
    def __init__(self, cache_dir: Path) -> None:
        self.path = Path(cache_dir) / CHANGES_FILE
        self.data: dict[str, dict] = {}
        self._alive: set[tuple[str, str]] = set()

    def load(self) -> None:
        try:
            data = load_json(self.path, {})
        except (OSError, ValueError) as e:
            logger.info("changes.json 不可用，重新开始记录: %s", e)
            data = {}
        self.data = data if isinstance(data, dict) else {}

    def get_time(self, module_path: str, file_path: str) -> float | None:
        entry = self.data.get(module_path, {}).get("files", {}).get(file_path)
        return entry.get("time") if entry else None

    def is_changed(self, module_path: str, file_path: str, mtime: float) -> bool:
        return self.get_time(module_path, file_path) != mtime

    def set_time(self, module_path: str, file_path: str, mtime: float) -> None:
        files = self.data.setdefault(module_path, {}).setdefault("files", {})
        files[file_path] = {"time": mtime}
        self.mark_exists(module_path, file_path)

    def mark_exists(self, module_path: str, file_path: str) -> None:
        self._alive.add((module_path, file_path))

    def forget(self, module_path: str, file_path: str) -> None:
        """文件已删除：去掉记录，保存时不再写出"""
        self._alive.discard((module_path, file_path))
        files = self.data.get(module_path, {}).get("files", {})
        files.pop(file_path, None)

    def save(self) -> None:
        kept: dict[str, dict] = {}
        for module_path, entry in self.data.items():
            files = {
                f: info for f, info in entry.get("files", {}).items()
                if (module_path, f) in self._alive
            }
            if files:
                kept[module_path] = {"files": files}
        dropped = sum(len(e.get("files", {})) for e in self.data.values()) - sum(
            len(e["files"]) for e in kept.values()
        )
        self.data = kept
        save_json(self.path, kept)
        logger.debug("changes.json 已保存，丢弃 %d 个失效条目", dropped)
