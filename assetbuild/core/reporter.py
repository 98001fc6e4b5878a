"""构建报告

运行期间挂在根日志器上的 ReportHandler 收集 WARNING 及以上的日志，
结束时写出 builder_report.json（错误/警告计数 + 全部消息）。
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

from assetbuild.core.models import BuildMessage
from assetbuild.utils.file_io import save_json

logger = logging.getLogger(__name__)

REPORT_FILE = "builder_report.json"


@dataclass
class BuildReport:
    messages: list[BuildMessage] = field(default_factory=list)

    @property
    def errors(self) -> int:
        return sum(1 for m in self.messages if m.level in ("ERROR", "CRITICAL"))

    @property
    def warnings(self) -> int:
        return sum(1 for m in self.messages if m.level == "WARNING")

    def summary(self) -> dict[str, int]:
        return {"errors": self.errors, "warnings": self.warnings}

    def to_dict(self) -> dict:
        return {
            "messages": [m.to_dict() for m in self.messages],
            "summary": self.summary(),
        }

    def save(self, cache_dir: Path) -> Path:
        path = Path(cache_dir) / REPORT_FILE
        save_json(path, self.to_dict(), sort_keys=False)
        logger.info(
            "构建报告已保存: %s (错误 %d, 警告 %d)", path, self.errors, self.warnings,
        )
        return path


class ReportHandler(logging.Handler):
    """把日志记录转成 BuildMessage 写入报告"""

    def __init__(self, report: BuildReport, level: int = logging.WARNING) -> None:
        super().__init__(level)
        self.report = report
        self._guard = threading.Lock()

    def emit(self, record: logging.LogRecord) -> None:
        message = BuildMessage(
            level=record.levelname,
            message=record.getMessage(),
            file_path=str(getattr(record, "build_file_path", "") or ""),
            module=str(getattr(record, "build_module", "") or ""),
        )
        with self._guard:
            self.report.messages.append(message)

    def attach(self) -> ReportHandler:
        logging.getLogger().addHandler(self)
        return self

    def detach(self) -> None:
        logging.getLogger().removeHandler(self)
