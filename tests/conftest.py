"""测试公共夹具：在 tmp_path 下搭建模块源码树与构建配置"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import pytest

from assetbuild.core.config import BuildConfig

# 默认模块 Mod 的源码
SOURCES: dict[str, str] = {
    "a.js": "define('Mod/a', ['Mod/b'], function(b) {\n    return b;\n});\n",
    "b.js": "define('Mod/b', [], function() {\n    return 1;\n});\n",
    "lib.js": (
        "define('Mod/lib', ['Mod/_private/helper'], function(h) {\n"
        "    return h;\n});\n"
    ),
    "_private/helper.js": "define('Mod/_private/helper', [], function() {\n    return 2;\n});\n",
    "_vars.less": "@color: red;\n",
    "style.less": "@import '_vars';\n.a { color: @color; }\n",
    "page.html.tmpl": (
        "<html><head></head><body>"
        "<div data-component=\"Mod/a\"></div></body></html>\n"
    ),
    "r.routes.js": "module.exports = {\n    '/mod/': 'Mod/a'\n};\n",
}


def write_file(path: Path, text: str | bytes) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(text, bytes):
        path.write_bytes(text)
    else:
        path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., BuildConfig]:
    """make_config(modules=("Mod",), **字段) -> 路径已解析的 BuildConfig"""

    def _make(modules: tuple[str, ...] = ("Mod",), **overrides: Any) -> BuildConfig:
        data: dict[str, Any] = {
            "cache": "cache",
            "output": "out",
            "modules": [{"name": n, "path": f"src/{n}"} for n in modules],
            "max_workers": 1,
        }
        data.update(overrides)
        cfg = BuildConfig.from_dict(data)
        cfg.resolve_paths(tmp_path)
        for m in cfg.modules:
            Path(m["path"]).mkdir(parents=True, exist_ok=True)
        return cfg

    return _make


@pytest.fixture
def project(tmp_path: Path, make_config: Callable[..., BuildConfig]) -> Callable[..., BuildConfig]:
    """写入默认 Mod 模块源码后返回配置"""

    def _make(**overrides: Any) -> BuildConfig:
        cfg = make_config(**overrides)
        root = Path(cfg.modules[0]["path"])
        for rel, text in SOURCES.items():
            write_file(root / rel, text)
        write_file(root / "img.png", b"\x89PNG\r\n\x1a\n")
        return cfg

    return _make


@pytest.fixture
def write() -> Callable[[Path, str | bytes], Path]:
    return write_file
