"""shell.py 单元测试"""

from __future__ import annotations

import sys
from unittest.mock import MagicMock, patch

import pytest

from assetbuild.core.exceptions import ExecutionError
from assetbuild.utils import shell
from assetbuild.utils.shell import CommandResult, run_cmd, set_executor, spawn_build


class TestRunCmd:
    def test_success(self, tmp_path) -> None:
        r = run_cmd("echo hello", cwd=str(tmp_path), label="test")
        assert r.returncode == 0
        assert "hello" in r.stdout

    def test_failure_raises(self, tmp_path) -> None:
        with pytest.raises(ExecutionError, match="cmd失败"):
            run_cmd("false", cwd=str(tmp_path))

    def test_custom_label_in_error(self, tmp_path) -> None:
        with pytest.raises(ExecutionError, match="lessc失败"):
            run_cmd("false", cwd=str(tmp_path), label="lessc")

    def test_injected_executor(self) -> None:
        fake = MagicMock()
        fake.execute.return_value = CommandResult(0, "out", "")
        original = shell.get_executor()
        set_executor(fake)
        try:
            assert run_cmd(["anything"]).stdout == "out"
        finally:
            set_executor(original)
        fake.execute.assert_called_once()


class TestSpawnBuild:
    def test_runs_module_entry(self) -> None:
        with patch("assetbuild.utils.shell.subprocess.Popen") as popen:
            spawn_build(["build", "-c", "b.yml"], cwd="/work")
        popen.assert_called_once_with(
            [sys.executable, "-m", "assetbuild", "build", "-c", "b.yml"], cwd="/work",
        )
