"""统一异常体系

所有构建异常继承 BuilderError。CLI 层据此区分致命错误（非零退出码）
与单文件可恢复错误（只记录日志，不影响退出码）。
"""

from __future__ import annotations


class BuilderError(Exception):
    """构建器基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(BuilderError):
    """配置文件缺失或必填字段无效"""

    code = "CONFIG_ERROR"


class LockError(BuilderError):
    """进程锁被另一个存活的构建进程占用"""

    code = "LOCK_ERROR"


class LazyBundleError(BuilderError):
    """同一个内部模块被分配到多个懒加载包"""

    code = "LAZY_BUNDLE_ERROR"


class PackError(BuilderError):
    """库打包失败（私有依赖缺失、循环依赖等）"""

    code = "PACK_ERROR"

    def __init__(self, message: str, library: str = "") -> None:
        super().__init__(message)
        self.library = library


class CompileError(BuilderError):
    """单文件编译失败，携带文件与模块上下文"""

    code = "COMPILE_ERROR"

    def __init__(
        self, message: str, file_path: str = "", module: str = "",
    ) -> None:
        super().__init__(message)
        self.file_path = file_path
        self.module = module


class ExecutionError(BuilderError):
    """外部命令执行失败"""

    code = "EXECUTION_ERROR"


class ValidationError(BuilderError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


# 致命错误：中止整个构建流程
FATAL_ERRORS: tuple[type[BuilderError], ...] = (
    ConfigError, LockError, LazyBundleError, PackError,
)
