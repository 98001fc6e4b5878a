"""编排器数据模型

- BuildContext: 阶段之间传递的中间结果
- WorkflowReport: 一次工作流的执行报告
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from assetbuild.core.models import StyleTheme
from assetbuild.core.reporter import BuildReport
from assetbuild.services.module_builder import ModuleResult

# 工作流阶段顺序（Unlock 在 finally 中单独执行）
STAGES = (
    "lock",
    "load_cache",
    "collect_themes",
    "clear_cache_if_needed",
    "prepare_runtime",
    "init_worker_pool",
    "generate_localization_json",
    "build_modules",
    "remove_stale_outputs",
    "save_cache",
    "terminate_worker_pool",
    "finalize_release",
    "pack_html",
    "custom_pack",
    "gzip",
    "save_joined_meta",
    "save_report",
)


@dataclass
class BuildContext:
    """一次构建内各阶段共享的中间结果"""

    themes: list[StyleTheme] = field(default_factory=list)
    invalidated: bool = False
    dictionary: dict[str, str] = field(default_factory=dict)
    joined_themes: dict[str, list[str]] = field(default_factory=dict)
    module_results: list[ModuleResult] = field(default_factory=list)
    bundles: dict[str, list[str]] = field(default_factory=dict)
    lazy_cycles: dict[str, list[list[str]]] = field(default_factory=dict)
    removed: int = 0
    build_report: BuildReport = field(default_factory=BuildReport)
    # 单文件重建
    file_path: str = ""
    changed_outputs: list[str] = field(default_factory=list)


@dataclass
class WorkflowReport:
    """工作流执行报告"""

    steps: list[dict[str, Any]] = field(default_factory=list)
    fatal: str = ""
    fatal_code: str = ""

    @property
    def success(self) -> bool:
        return not self.fatal

    def step_status(self, name: str) -> str | None:
        for step in self.steps:
            if step["step"] == name:
                return step["status"]
        return None
