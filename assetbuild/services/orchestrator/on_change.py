"""单文件重建工作流（build --file / watch 模式的子进程）

lock -> load_cache -> collect_themes(.less) -> prepare_runtime ->
rebuild -> save_cache -> notify -> unlock(finally)

以上次缓存为起点，只重建变化的文件以及记录的依赖中包含它的文件；
源文件已删除时删除它的产物并清除缓存记录。
"""

from __future__ import annotations

import logging
from pathlib import Path

from assetbuild.core.exceptions import BuilderError
from assetbuild.core.reporter import ReportHandler
from assetbuild.core.themes import collect_themes
from assetbuild.services.container import ServiceContainer
from assetbuild.services.meta_writer import collect_module_dependencies
from assetbuild.services.module_builder import ModuleBuilder
from assetbuild.services.orchestrator.models import BuildContext, WorkflowReport
from assetbuild.services.orchestrator.steps import WorkflowSteps
from assetbuild.services.theme_builder import build_joined_themes
from assetbuild.utils.net import post_json

logger = logging.getLogger(__name__)

HOT_RELOAD_PATH = "/changes"


class OnChangeWorkflow:
    def __init__(self, container: ServiceContainer | None = None) -> None:
        self.c = container or ServiceContainer()
        self.steps = WorkflowSteps(self.c)

    def run(self, file_path: str) -> WorkflowReport:
        ctx = BuildContext(file_path=str(Path(file_path).resolve()))
        report = WorkflowReport()
        handler = ReportHandler(ctx.build_report).attach()
        try:
            self.steps.lock(ctx, report)
            self.load_cache(ctx, report)
            if ctx.file_path.endswith(".less"):
                self.collect_themes(ctx, report)
            else:
                self.steps.skip("collect_themes")(ctx, report)
            self.steps.prepare_runtime(ctx, report)
            self.rebuild(ctx, report)
            self.steps.save_cache(ctx, report)
            if self.c.config.hot_reload_port:
                self.notify(ctx, report)
            else:
                self.steps.skip("notify")(ctx, report)
        except BuilderError as e:
            report.fatal = str(e)
            report.fatal_code = e.code
            logger.error("单文件重建中止 [%s]: %s", e.code, e)
            raise
        finally:
            self.steps.unlock(ctx, report)
            handler.detach()
        return report

    def load_cache(self, ctx: BuildContext, report: WorkflowReport) -> None:
        cache = self.c.cache
        cache.load()
        cache.carry_over()
        report.steps.append({"step": "load_cache", "status": "done"})

    def collect_themes(self, ctx: BuildContext, report: WorkflowReport) -> None:
        ctx.themes = collect_themes(self.c.modules, self.c.cache, self.c.config.multi_themes)
        report.steps.append({"step": "collect_themes", "status": "done", "themes": len(ctx.themes)})

    def _targets(self, key: str) -> list[str]:
        """变化的文件加上依赖它的文件（去重，保持顺序）"""
        targets = [key]
        for dependent in self.c.cache.dependents_of(key):
            if dependent not in targets:
                targets.append(dependent)
        return targets

    def rebuild(self, ctx: BuildContext, report: WorkflowReport) -> None:
        cache = self.c.cache
        config = self.c.config
        runtime = self.c.runtime
        path = Path(ctx.file_path)
        key = cache.key_for_path(path)
        targets = self._targets(key)
        by_folder = {m.folder_name: m for m in self.c.modules}

        removed_outputs: list[str] = []
        if not path.exists():
            folder = key.split("/", 1)[0]
            removed_outputs = cache.remove_file(key, by_folder.get(folder))
            self.c.reconciler.remove_outputs(removed_outputs)
            targets = targets[1:]
            logger.info("源文件已删除，清除产物 %d 个: %s", len(removed_outputs), key)

        grouped: dict[str, list[str]] = {}
        for target in targets:
            folder, _, rel = target.partition("/")
            if folder in by_folder and rel and (by_folder[folder].path / rel).is_file():
                grouped.setdefault(folder, []).append(rel)
            else:
                logger.warning("无法定位需要重建的文件，已跳过: %s", target)

        builder = ModuleBuilder(cache, runtime, force=True)
        rebuilt = 0
        for folder, rels in grouped.items():
            module = by_folder[folder]
            old = {module.key_of(r): cache.last_outputs(module.key_of(r)) for r in rels}
            records = builder.run_files(module, rels)
            if config.release or config.pack_libraries:
                builder.pack_libraries(module, records)
            rebuilt += len(records)
            for file_key, outputs in old.items():
                current = set(cache.current.input_paths.get(file_key, {}).get("output", []))
                stale = [o for o in outputs if o not in current]
                if stale:
                    self.c.reconciler.remove_outputs(stale)

        changed = set(runtime.changed_outputs)
        if ctx.themes or any(o.endswith(".css") for o in changed):
            build_joined_themes(cache, config.build_output, config.release, only=changed)
        collect_module_dependencies(cache)

        ctx.changed_outputs = sorted(changed | set(removed_outputs))
        report.steps.append({
            "step": "rebuild", "status": "done", "files": rebuilt,
            "outputs": len(ctx.changed_outputs),
        })
        logger.info("单文件重建完成: %s (共重建 %d 个文件)", key, rebuilt)

    def notify(self, ctx: BuildContext, report: WorkflowReport) -> None:
        """把变化的产物推送给热更新服务"""
        url = f"http://localhost:{self.c.config.hot_reload_port}{HOT_RELOAD_PATH}"
        ok = post_json(url, {"changed": ctx.changed_outputs})
        report.steps.append({"step": "notify", "status": "done" if ok else "failed"})
