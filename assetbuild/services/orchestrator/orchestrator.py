"""构建编排器 - 协调 18 步工作流

职责：
- 按配置选出每一步的实现（关闭的步骤为恒等步骤）
- 致命错误时标记缓存失败并仍然保存缓存与报告
- 保证 unlock 在 finally 中执行
"""

from __future__ import annotations

import logging

from assetbuild.core.config import BuildConfig
from assetbuild.core.exceptions import BuilderError
from assetbuild.core.reporter import ReportHandler
from assetbuild.services.container import ServiceContainer
from assetbuild.services.orchestrator.models import STAGES, BuildContext, WorkflowReport
from assetbuild.services.orchestrator.steps import StepFn, WorkflowSteps

logger = logging.getLogger(__name__)

INTERNAL_ERROR = "INTERNAL_ERROR"


def enabled_stages(config: BuildConfig) -> dict[str, bool]:
    """按配置决定可选步骤是否执行，未列出的步骤总是执行"""
    return {
        "generate_localization_json": config.localization,
        "finalize_release": config.release,
        "pack_html": config.release and config.pack_html,
        "custom_pack": config.release and config.custom_pack,
        "gzip": config.release and config.compress,
    }


class Orchestrator:
    """全量构建工作流（try/finally 保证 unlock）"""

    def __init__(self, container: ServiceContainer | None = None) -> None:
        self.c = container or ServiceContainer()
        self.steps = WorkflowSteps(self.c)

    def plan(self) -> list[tuple[str, StepFn]]:
        enabled = enabled_stages(self.c.config)
        return [
            (name, getattr(self.steps, name) if enabled.get(name, True) else self.steps.skip(name))
            for name in STAGES
        ]

    def run(self) -> WorkflowReport:
        """执行工作流；致命错误在收尾后原样抛出"""
        ctx = BuildContext()
        report = WorkflowReport()
        handler = ReportHandler(ctx.build_report).attach()
        try:
            for _name, step in self.plan():
                step(ctx, report)
        except BuilderError as e:
            report.fatal = str(e)
            report.fatal_code = e.code
            logger.error("构建中止 [%s]: %s", e.code, e)
            self._finalize_failed(ctx, report)
            raise
        except Exception as e:
            # 非预期异常同样要标记缓存失败并写出报告
            report.fatal = str(e) or type(e).__name__
            report.fatal_code = INTERNAL_ERROR
            logger.exception("构建异常中止: %s", e)
            self._finalize_failed(ctx, report)
            raise
        finally:
            self.steps.unlock(ctx, report)
            handler.detach()
        return report

    def _finalize_failed(self, ctx: BuildContext, report: WorkflowReport) -> None:
        """致命错误后的收尾：缓存标记为失败，下一次构建整体作废

        没拿到进程锁时（锁被占用）不碰缓存目录。
        """
        if not self.c.lock.acquired:
            return
        cache = self.c.cache
        try:
            cache.mark_cache_as_failed()
            cache.save()
            ctx.build_report.save(self.c.config.cache_dir)
        except OSError as e:
            logger.error("失败收尾时保存缓存出错: %s", e)
        report.steps.append({"step": "finalize_failed", "status": "done"})
