"""样式主题收集与合并

两种主题声明:
- 旧方案: <模块>/themes/<主题>/<主题>.less，主题名必须与目录名一致且在
  multi_themes 白名单内
- 新方案: 名为 <模块>-<主题>-theme 的主题模块中的 _theme.less，
  所在子目录即主题修饰符（根目录为空）

合并主题 themes/<主题>[__修饰符].css 由各主题模块同一修饰符目录下的
样式产物依次拼接而成。
"""

from __future__ import annotations

import json
import logging
import posixpath
from pathlib import Path
from typing import Any, Iterable, Protocol

from assetbuild.core.models import Module, StyleTheme
from assetbuild.utils.file_io import to_posix
from assetbuild.utils.logger import build_context

logger = logging.getLogger(__name__)

THEME_ENTRY = "_theme.less"
RESOURCE_ROOT_STUB = "%{RESOURCE_ROOT}"


class ThemeSink(Protocol):
    def add_module_less_configuration(self, module: str, config: dict[str, Any]) -> None: ...

    def add_style_theme(self, theme: StyleTheme) -> None: ...

    def add_new_style_theme(
        self, theme_module: str, modifier: str, info: dict[str, str],
    ) -> None: ...


def parse_theme_module(folder: str, known: Iterable[str]) -> tuple[str, str] | None:
    """"Controls-online-theme" -> ("Controls", "online")

    从右向左逐段弹出，直到剩余前缀是已知模块名。
    """
    parts = folder.split("-")
    if len(parts) <= 2 or parts[-1] != "theme":
        return None
    known_set = set(known)
    head = parts[:-1]
    for i in range(len(head) - 1, 0, -1):
        module = "-".join(head[:i])
        if module in known_set:
            return module, "-".join(head[i:])
    return None


def _read_config(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning("主题配置读取失败，使用默认配置: %s (%s)", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def collect_themes(
    modules: list[Module], sink: ThemeSink, multi_themes: Iterable[str],
) -> list[StyleTheme]:
    """扫描全部模块的主题声明并登记到缓存"""
    permitted = set(multi_themes)
    known = {m.folder_name for m in modules} | {m.name for m in modules}
    themes: list[StyleTheme] = []

    for module in modules:
        root = module.path
        for less in sorted(root.glob("themes/*/*.less")):
            theme = _legacy_theme(module, less, permitted)
            if theme is not None:
                sink.add_style_theme(theme)
                themes.append(theme)

        legacy_config = root / "themes.config.json"
        if legacy_config.is_file():
            logger.warning(
                "themes.config.json 已废弃，请改用新主题方案: %s", legacy_config,
            )
            sink.add_module_less_configuration(module.name, _read_config(legacy_config))

        parsed = parse_theme_module(module.folder_name, known)
        for entry in sorted(root.rglob(THEME_ENTRY)):
            if parsed is None:
                logger.error(
                    "%s 只能出现在 <模块>-<主题>-theme 主题模块中: %s",
                    THEME_ENTRY, entry,
                )
                continue
            modifier = to_posix(entry.parent.relative_to(root))
            modifier = "" if modifier == "." else modifier
            owner, theme_name = parsed
            sink.add_new_style_theme(
                module.name, modifier, {"moduleName": owner, "themeName": theme_name},
            )
            themes.append(StyleTheme(
                name=theme_name, module=module.name,
                path=to_posix(Path(module.folder_name) / entry.relative_to(root)),
                modifier=modifier,
            ))
    logger.info("主题收集完成: %d 个", len(themes))
    return themes


def _legacy_theme(module: Module, less: Path, permitted: set[str]) -> StyleTheme | None:
    folder = less.parent.name
    name = less.stem
    if name != folder:
        # 同一目录下与目录名不一致的样式视为主题的组成文件
        if not (less.parent / f"{folder}.less").exists():
            logger.error(
                "主题目录名与文件名不一致，拒绝多主题声明: %s", less,
                extra=build_context(module.name),
            )
        return None
    if name not in permitted:
        logger.error(
            "尝试定义未允许的多主题 %s: %s", name, less,
            extra=build_context(module.name),
        )
        return None
    config_path = less.parent / "theme.config.json"
    if config_path.is_file():
        config = _read_config(config_path)
    else:
        logger.warning(
            "主题 %s 缺少 theme.config.json，使用默认配置", name,
            extra=build_context(module.name),
        )
        config = {}
    return StyleTheme(
        name=name, module=module.name,
        path=to_posix(Path(module.folder_name) / less.relative_to(module.path)),
        config=config,
    )


def theme_parts(
    theme_folder: str, modifier: str, css_outputs: Iterable[str],
) -> list[str]:
    """主题模块指定修饰符目录下（不含子目录）的样式产物"""
    base = posixpath.join(theme_folder, modifier) if modifier else theme_folder
    parts = []
    for rel in css_outputs:
        if posixpath.dirname(rel) != base or not rel.endswith(".css"):
            continue
        name = posixpath.basename(rel)
        if name.startswith("_") or name.endswith(".min.css"):
            continue
        parts.append(rel)
    return sorted(parts)


def join_theme(parts: list[tuple[str, str]], resource_root: str = "/") -> str:
    """拼接主题样式，每段前加 /* 来源 */ 注释"""
    chunks = []
    for rel, css in parts:
        chunks.append(f"/* {rel} */\n{css.replace(RESOURCE_ROOT_STUB, resource_root)}")
    return "\n".join(chunks)


def joined_theme_name(theme_name: str, modifier: str) -> str:
    return StyleTheme(name=theme_name, module="", path="", modifier=modifier).joined_name
