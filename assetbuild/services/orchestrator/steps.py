"""工作流步骤实现

步骤顺序（见 models.STAGES）：
 1. lock                        获取进程锁
 2. load_cache                  读取上一次缓存
 3. collect_themes              收集样式主题
 4. clear_cache_if_needed       清理待删产物，不兼容时整体作废缓存
 5. prepare_runtime             创建运行时服务
 6. init_worker_pool            启动编译工作池
 7. generate_localization_json  生成本地化词典
 8. build_modules               并发构建全部模块
 9. remove_stale_outputs        删除过期产物
10. save_cache                  保存缓存
11. terminate_worker_pool       关闭工作池
12. finalize_release            同步 release 产物
13. pack_html                   静态页面打包
14. custom_pack                 自定义包与懒加载包
15. gzip                        压缩
16. save_joined_meta            写出元数据
17. save_report                 写出构建报告
18. unlock                      释放进程锁（finally）

配置关闭的步骤由 skip() 生成的恒等步骤代替，步骤体内不做开关判断。
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Callable

from assetbuild.core.graph import DependencyGraph
from assetbuild.core.themes import collect_themes
from assetbuild.services.meta_writer import MetaWriter, collect_module_dependencies
from assetbuild.services.module_builder import ModuleBuilder
from assetbuild.services.orchestrator.models import STAGES, BuildContext, WorkflowReport
from assetbuild.services.packaging import (
    CustomPacker,
    compressed_of,
    finalize_release,
    gzip_outputs,
    pack_html,
)
from assetbuild.services.theme_builder import build_joined_themes

if TYPE_CHECKING:
    from assetbuild.services.container import ServiceContainer

logger = logging.getLogger(__name__)

StepFn = Callable[[BuildContext, WorkflowReport], None]


def step_number(name: str) -> int:
    return STAGES.index(name) + 1 if name in STAGES else len(STAGES) + 1


class WorkflowSteps:
    """构建步骤集合"""

    def __init__(self, container: ServiceContainer) -> None:
        self.c = container

    def skip(self, name: str) -> StepFn:
        """配置关闭的步骤：只登记 skipped，不做任何事"""

        def _identity(ctx: BuildContext, report: WorkflowReport) -> None:
            report.steps.append({"step": name, "status": "skipped"})
            logger.debug("[Step %d] %s 已跳过", step_number(name), name)

        return _identity

    # ---- 准备 ----

    def lock(self, ctx: BuildContext, report: WorkflowReport) -> None:
        """步骤1: 获取进程锁，残留锁说明上一次构建异常中断"""
        stale = self.c.lock.acquire()
        report.steps.append({"step": "lock", "status": "done", "stale": stale})
        logger.info("[Step 1] 已获取进程锁 (pid 文件: %s)", self.c.lock.path)

    def load_cache(self, ctx: BuildContext, report: WorkflowReport) -> None:
        """步骤2: 读取上一次缓存，读取失败按首次构建处理"""
        cache = self.c.cache
        cache.load()
        cache.previous_run_failed = self.c.lock.stale
        first = cache.is_first_build()
        report.steps.append({"step": "load_cache", "status": "done", "first_build": first})
        logger.info(
            "[Step 2] 缓存已加载: %s", "首次构建" if first else f"{len(cache.last.input_paths)} 个文件记录",
        )

    def collect_themes(self, ctx: BuildContext, report: WorkflowReport) -> None:
        """步骤3: 收集样式主题"""
        ctx.themes = collect_themes(self.c.modules, self.c.cache, self.c.config.multi_themes)
        report.steps.append({"step": "collect_themes", "status": "done", "themes": len(ctx.themes)})
        logger.info("[Step 3] 主题收集完成: %d 个", len(ctx.themes))

    def clear_cache_if_needed(self, ctx: BuildContext, report: WorkflowReport) -> None:
        """步骤4: 清理上次登记的打包产物，缓存不兼容时整体作废"""
        ctx.invalidated = self.c.cache.clear_cache_if_needed(self.c.config.run_parameters())
        report.steps.append({
            "step": "clear_cache_if_needed", "status": "done", "invalidated": ctx.invalidated,
        })
        logger.info("[Step 4] 缓存检查完成%s", "，已整体作废" if ctx.invalidated else "")

    def prepare_runtime(self, ctx: BuildContext, report: WorkflowReport) -> None:
        """步骤5: 创建运行时服务（编译器注册表、本地化生成器）

        需要初始化核心且存在 required 模块时，先把它们编译到核心目录。
        """
        runtime = self.c.runtime
        core = self.c.config.init_core and bool(runtime.required_modules)
        written = runtime.prepare_core(self.c.modules) if core else 0
        report.steps.append({
            "step": "prepare_runtime", "status": "done",
            "core": core, "core_files": written,
        })
        logger.info(
            "[Step 5] 运行时就绪 (本地化: %s, 核心: %s)",
            "开" if runtime.localizer else "关", "开" if core else "关",
        )

    def init_worker_pool(self, ctx: BuildContext, report: WorkflowReport) -> None:
        """步骤6: 启动编译工作池"""
        pool = self.c.runtime.start_pool()
        report.steps.append({"step": "init_worker_pool", "status": "done", "workers": pool.size})
        logger.info("[Step 6] 工作池已启动: %d 个 worker", pool.size)

    def generate_localization_json(self, ctx: BuildContext, report: WorkflowReport) -> None:
        """步骤7: 合并各模块本地化词典"""
        config = self.c.config
        cache = self.c.cache
        localizer = self.c.runtime.localizer
        if localizer is None:
            raise RuntimeError("本地化已开启但运行时缺少本地化生成器")
        for module in self.c.modules:
            generated = localizer.generate(module, config.localizations, config.build_output)
            for key, rel in generated.items():
                cache.add_output_file(module.name, rel, module.name)
                ctx.dictionary[key] = rel
        report.steps.append({
            "step": "generate_localization_json", "status": "done",
            "dictionaries": len(ctx.dictionary),
        })
        logger.info("[Step 7] 本地化词典生成完成: %d 个", len(ctx.dictionary))

    # ---- 构建 ----

    def build_modules(self, ctx: BuildContext, report: WorkflowReport) -> None:
        """步骤8: 并发构建全部模块，汇总合并主题与依赖图"""
        config = self.c.config
        cache = self.c.cache
        modules = self.c.modules
        builder = ModuleBuilder(cache, self.c.runtime)
        workers = max(1, min(len(modules), config.fanout))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="assetbuild-module") as pool:
            futures = [pool.submit(builder.build, m) for m in modules]
            ctx.module_results = [f.result() for f in futures]

        ctx.joined_themes = build_joined_themes(cache, config.build_output, config.release)
        collect_module_dependencies(cache, config.compiled)

        compiled = sum(r.compiled for r in ctx.module_results)
        failed = sum(r.failed for r in ctx.module_results)
        skipped = sum(1 for r in ctx.module_results if r.skipped)
        report.steps.append({
            "step": "build_modules", "status": "done",
            "modules": [r.to_dict() for r in ctx.module_results],
        })
        logger.info(
            "[Step 8] 模块构建完成: %d 个模块 (跳过 %d), 编译 %d 个文件, 失败 %d",
            len(modules), skipped, compiled, failed,
        )

    def remove_stale_outputs(self, ctx: BuildContext, report: WorkflowReport) -> None:
        """步骤9: 删除上次构建产生、本次不再有源文件支撑的产物"""
        ctx.removed = self.c.reconciler.remove_stale_outputs()
        report.steps.append({"step": "remove_stale_outputs", "status": "done", "removed": ctx.removed})
        logger.info("[Step 9] 过期产物清理完成: %d 个", ctx.removed)

    def save_cache(self, ctx: BuildContext, report: WorkflowReport) -> None:
        """步骤10: 保存缓存"""
        self.c.cache.save()
        report.steps.append({"step": "save_cache", "status": "done"})
        logger.info("[Step 10] 缓存已保存")

    def terminate_worker_pool(self, ctx: BuildContext, report: WorkflowReport) -> None:
        """步骤11: 关闭工作池"""
        self.c.close()
        report.steps.append({"step": "terminate_worker_pool", "status": "done"})
        logger.info("[Step 11] 工作池已关闭")

    # ---- release 打包 ----

    def _graph(self) -> DependencyGraph:
        data = self.c.cache.get_module_dependencies()
        return DependencyGraph(data["nodes"], data["links"])

    def finalize_release(self, ctx: BuildContext, report: WorkflowReport) -> None:
        """步骤12: 构建目录同步到输出目录并替换版本占位符"""
        config = self.c.config
        written = finalize_release(config.build_output, config.output_dir, config.version)
        report.steps.append({"step": "finalize_release", "status": "done", "written": written})
        logger.info("[Step 12] release 产物同步完成: %d 个文件更新", written)

    def pack_html(self, ctx: BuildContext, report: WorkflowReport) -> None:
        """步骤13: 静态页面依赖打包"""
        written = pack_html(self.c.cache, self._graph(), self.c.config.output_dir)
        self.c.cache.add_files_to_remove(written)
        report.steps.append({"step": "pack_html", "status": "done", "packages": len(written)})
        logger.info("[Step 13] 静态页面打包完成: %d 个包文件", len(written))

    def custom_pack(self, ctx: BuildContext, report: WorkflowReport) -> None:
        """步骤14: 自定义包与懒加载包（归属冲突是致命错误）"""
        packer = CustomPacker(self.c.cache, self._graph(), self.c.config.output_dir)
        written = packer.run()
        self.c.cache.add_files_to_remove(written)
        ctx.bundles = packer.bundles
        ctx.lazy_cycles = packer.cycles
        report.steps.append({
            "step": "custom_pack", "status": "done",
            "packages": len(packer.bundles), "lazy_bundles": len(packer.registry),
            "cycles": sum(len(v) for v in packer.cycles.values()),
        })
        logger.info(
            "[Step 14] 自定义打包完成: %d 个包, %d 个懒加载包",
            len(packer.bundles), len(packer.registry),
        )

    def gzip(self, ctx: BuildContext, report: WorkflowReport) -> None:
        """步骤15: 写出 .gz 副本"""
        cache = self.c.cache
        written = gzip_outputs(self.c.config.output_dir)
        cache.add_files_to_remove(compressed_of(cache.files_to_remove, written))
        report.steps.append({"step": "gzip", "status": "done", "files": len(written)})
        logger.info("[Step 15] 压缩完成: %d 个文件", len(written))

    # ---- 收尾 ----

    def save_joined_meta(self, ctx: BuildContext, report: WorkflowReport) -> None:
        """步骤16: 写出 contents 等元数据分片与合并文件"""
        writer = MetaWriter(
            self.c.cache, self.c.config.output_dir,
            dictionary=ctx.dictionary, themes=ctx.joined_themes, bundles=ctx.bundles,
        )
        written = writer.write_all()
        report.steps.append({"step": "save_joined_meta", "status": "done", "files": len(written)})
        logger.info("[Step 16] 元数据写出完成: %d 个文件", len(written))

    def save_report(self, ctx: BuildContext, report: WorkflowReport) -> None:
        """步骤17: 写出 builder_report.json"""
        path = ctx.build_report.save(self.c.config.cache_dir)
        summary = ctx.build_report.summary()
        report.steps.append({"step": "save_report", "status": "done", **summary})
        logger.info(
            "[Step 17] 构建报告: 错误 %d, 警告 %d (%s)",
            summary["errors"], summary["warnings"], path,
        )

    def unlock(self, ctx: BuildContext, report: WorkflowReport) -> None:
        """步骤18: 关闭工作池并释放进程锁，无论前面步骤是否失败"""
        self.c.close()
        self.c.lock.release()
        report.steps.append({"step": "unlock", "status": "done"})
        logger.info("[Step 18] 已释放进程锁")
