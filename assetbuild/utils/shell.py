"""子进程调用封装

外部编译器（CommandCompiler）与 watch 模式的子构建进程都经过这里。
CommandExecutor 协议便于测试替换。
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import sys
from dataclasses import dataclass
from typing import Protocol

from assetbuild.core.exceptions import ExecutionError

logger = logging.getLogger(__name__)


# =========================================================================
# 命令执行结果
# =========================================================================

@dataclass
class CommandResult:
    """命令执行结果（与 subprocess 解耦）"""

    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


# =========================================================================
# 命令执行器协议
# =========================================================================

class CommandExecutor(Protocol):
    """命令执行器协议，测试时可注入 mock 实现"""

    def execute(
        self,
        cmd: str | list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        ...


class LocalExecutor:
    """本地命令执行器（默认实现）"""

    def execute(
        self,
        cmd: str | list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        args = shlex.split(cmd) if isinstance(cmd, str) else cmd
        r = subprocess.run(
            args, capture_output=True, text=True,
            cwd=cwd, env=env, check=False, timeout=timeout,
        )
        return CommandResult(returncode=r.returncode, stdout=r.stdout, stderr=r.stderr)


_default_executor: CommandExecutor = LocalExecutor()


def get_executor() -> CommandExecutor:
    return _default_executor


def set_executor(executor: CommandExecutor) -> None:
    """替换全局默认命令执行器（用于测试）"""
    global _default_executor  # noqa: PLW0603
    _default_executor = executor


# =========================================================================
# 便捷函数
# =========================================================================

def run_cmd(
    cmd: str | list[str], *, cwd: str = ".",
    env: dict[str, str] | None = None,
    timeout: int | None = None,
    label: str = "cmd",
) -> CommandResult:
    """通过当前执行器运行命令，失败抛 ExecutionError"""
    logger.debug("  %s: %s (cwd=%s)", label, cmd, cwd)
    r = get_executor().execute(cmd, cwd=cwd, env=env, timeout=timeout)
    if not r.success:
        raise ExecutionError(f"{label}失败 (rc={r.returncode}): {r.stderr[:500]}")
    return r


def spawn_build(args: list[str], *, cwd: str = ".") -> subprocess.Popen:
    """以子进程方式启动一次 assetbuild 构建（watch 模式使用，可随时 terminate）"""
    cmd = [sys.executable, "-m", "assetbuild", *args]
    logger.info("启动子构建: %s", " ".join(shlex.quote(a) for a in cmd))
    return subprocess.Popen(cmd, cwd=cwd)  # nosec B603
