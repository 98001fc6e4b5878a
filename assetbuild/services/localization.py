"""本地化词典生成

把模块 lang/<语言>/*.json 合并为 <模块>/lang/<语言>/<语言>.json。合并结果
按输入哈希缓存在 <cache>/dictionary/ 下，缓存整体作废时这个目录保留。
"""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path

from assetbuild.core.models import Module
from assetbuild.utils.file_io import atomic_write, dump_json, load_json, save_json

logger = logging.getLogger(__name__)

DICTIONARY_DIR = "dictionary"


class DictionaryLocalizer:
    def __init__(self, cache_dir: Path) -> None:
        self.cache_root = Path(cache_dir) / DICTIONARY_DIR

    def generate(
        self, module: Module, locales: list[str], output_root: Path,
    ) -> dict[str, str]:
        result: dict[str, str] = {}
        for locale in locales:
            sources = sorted((module.path / "lang" / locale).glob("*.json"))
            if not sources:
                continue
            rel = f"{module.folder_name}/lang/{locale}/{locale}.json"
            merged = self._merged(module, locale, sources)
            atomic_write(Path(output_root) / rel, dump_json(merged))
            result[f"{module.name}.{locale}.json"] = rel
        return result

    def _merged(self, module: Module, locale: str, sources: list[Path]) -> dict:
        digest = hashlib.sha1()  # nosec B324
        for src in sources:
            digest.update(src.name.encode("utf-8"))
            digest.update(src.read_bytes())
        cache_file = self.cache_root / module.name / f"{locale}.json"
        try:
            cached = load_json(cache_file, {})
        except (OSError, ValueError):
            cached = {}
        if cached.get("hash") == digest.hexdigest():
            return cached["data"]

        merged: dict = {}
        for src in sources:
            try:
                data = json.loads(src.read_text(encoding="utf-8"))
            except ValueError as e:
                logger.error("词典文件格式错误，已跳过: %s (%s)", src, e)
                continue
            if isinstance(data, dict):
                merged.update(data)
        save_json(cache_file, {"hash": digest.hexdigest(), "data": merged})
        logger.debug("词典已生成: %s/%s (%d 条)", module.name, locale, len(merged))
        return merged
