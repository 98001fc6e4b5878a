"""单文件处理管线

每个阶段是 record -> record | None 的函数，返回 None 表示该文件在此
阶段结束（例如未变更的文件在变更检测后直接退出）。阶段通过显式链式
调用组合，单文件错误在管线边界被捕获并转换为带上下文的日志。

用法:
    pipeline = FilePipeline([("detect", detect), ("compile", compile_)])
    pipeline.subscribe(my_hook)
    result = pipeline.run(record)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable

from assetbuild.core.exceptions import CompileError
from assetbuild.core.models import FileRecord
from assetbuild.utils.logger import build_context

logger = logging.getLogger(__name__)

Stage = Callable[[FileRecord], "FileRecord | None"]
ErrorCallback = Callable[[FileRecord, Exception], None]

# 单文件可恢复错误；其余 BuilderError（如 PackError）继续向上抛
RECOVERABLE_ERRORS: tuple[type[Exception], ...] = (
    CompileError, ValueError, OSError, UnicodeDecodeError,
)


class PipelineHook(ABC):
    """管线观察者，文件成功走完全部阶段后收到通知"""

    @abstractmethod
    def on_record(self, record: FileRecord) -> None:
        """接收处理完成的文件记录"""


class FilePipeline:
    """有序阶段链"""

    def __init__(
        self,
        stages: list[tuple[str, Stage]],
        on_error: ErrorCallback | None = None,
    ) -> None:
        self.stages = list(stages)
        self._on_error = on_error
        self._hooks: list[PipelineHook] = []

    def subscribe(self, hook: PipelineHook) -> None:
        self._hooks.append(hook)

    def run(self, record: FileRecord) -> FileRecord | None:
        current: FileRecord | None = record
        for name, stage in self.stages:
            try:
                current = stage(current)
            except RECOVERABLE_ERRORS as exc:
                file_path = getattr(exc, "file_path", "") or record.key
                logger.error(
                    "文件处理失败 [%s]: %s", name, exc,
                    extra=build_context(record.module.name, file_path),
                )
                if self._on_error is not None:
                    self._on_error(record, exc)
                return None
            if current is None:
                return None

        for hook in self._hooks:
            try:
                hook.on_record(current)
            except (ValueError, RuntimeError, OSError, TypeError):
                logger.exception("管线钩子执行失败: %s", type(hook).__name__)
        return current
