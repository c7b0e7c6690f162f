"""procdrain - 子进程输出排空与等待。

在子进程运行期间并发读取其 stdout/stderr（避免管道写满导致子进程阻塞），
并提供无界等待和带超时的有界等待。

环境变量:
    PROCDRAIN_QUIET: 丢弃子进程输出 (默认 false)
    PROCDRAIN_POLL_INTERVAL: 有界等待的轮询间隔 (默认 0.1s)
    PROCDRAIN_LOG_DEBUG: 日志输出到临时文件 (默认 false)

用法:
    procdrain --timeout 30 -- make test
"""

__version__ = "0.1.0"

from .runtime import (
    Exited,
    JoinReport,
    ProcessSupervisor,
    ProcessTimeoutError,
    StreamDrain,
    WaitInterrupted,
)

__all__ = [
    "__version__",
    "Exited",
    "JoinReport",
    "ProcessSupervisor",
    "ProcessTimeoutError",
    "StreamDrain",
    "WaitInterrupted",
]
