"""进程锁

<cache>/builder.lockfile 内容为持有者 pid。锁被存活进程持有时拒绝
启动；锁文件残留但进程已不存在，说明上一次构建异常中断，接管锁并
标记缓存需要作废。
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from assetbuild.core.exceptions import LockError

logger = logging.getLogger(__name__)

LOCK_FILE = "builder.lockfile"


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


class ProcessLock:
    def __init__(self, cache_dir: Path) -> None:
        self.path = Path(cache_dir) / LOCK_FILE
        self.acquired = False
        self.stale = False

    def acquire(self) -> bool:
        """获取锁，返回是否接管了残留锁（上一次构建失败）"""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self.path.exists():
            try:
                pid = int(self.path.read_text(encoding="utf-8").strip() or 0)
            except (OSError, ValueError):
                pid = 0
            if pid != os.getpid() and _pid_alive(pid):
                raise LockError(
                    f"另一个构建进程正在运行 (pid={pid})，锁文件: {self.path}"
                )
            logger.warning("检测到残留锁文件，上一次构建未正常结束: %s", self.path)
            self.stale = True
        try:
            fd = os.open(str(self.path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
        except OSError as e:
            raise LockError(f"无法创建锁文件 {self.path}: {e}") from e
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(str(os.getpid()))
        self.acquired = True
        logger.debug("已获取进程锁: %s (pid=%d)", self.path, os.getpid())
        return self.stale

    def release(self) -> None:
        if not self.acquired:
            return
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        self.acquired = False
        logger.debug("已释放进程锁: %s", self.path)
