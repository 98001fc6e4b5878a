"""构建报告测试"""

from __future__ import annotations

import json
import logging

from assetbuild.core.reporter import REPORT_FILE, BuildReport, ReportHandler
from assetbuild.utils.logger import build_context


class TestReportHandler:
    def test_collects_warnings_and_errors(self) -> None:
        report = BuildReport()
        handler = ReportHandler(report).attach()
        log = logging.getLogger("assetbuild.test")
        try:
            log.info("忽略")
            log.warning("警告 %d", 1)
            log.error("失败", extra=build_context("Mod", "Mod/a.less"))
        finally:
            handler.detach()
        assert report.summary() == {"errors": 1, "warnings": 1}
        assert report.messages[1].file_path == "Mod/a.less"
        assert report.messages[1].module == "Mod"

    def test_detached_handler_stops_collecting(self) -> None:
        report = BuildReport()
        ReportHandler(report).attach().detach()
        logging.getLogger("assetbuild.test").error("不会被收集")
        assert report.messages == []


class TestBuildReport:
    def test_save(self, tmp_path) -> None:
        report = BuildReport()
        handler = ReportHandler(report).attach()
        try:
            logging.getLogger("assetbuild.test").critical("致命")
        finally:
            handler.detach()
        path = report.save(tmp_path)
        assert path == tmp_path / REPORT_FILE
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["summary"] == {"errors": 1, "warnings": 0}
        assert data["messages"][0]["level"] == "CRITICAL"
