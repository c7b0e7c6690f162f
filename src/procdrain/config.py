"""procdrain 环境变量配置管理。

环境变量:
    PROCDRAIN_QUIET: 静默模式
        - true/1/yes = 丢弃子进程输出（仍然读取管道）
        - false/0/no = 转发到父进程的 stdout/stderr (默认)

    PROCDRAIN_POLL_INTERVAL: 有界等待的轮询间隔（秒）
        - 默认 0.1 秒
        - 限制在 0.01-5 秒范围

    PROCDRAIN_TERM_TIMEOUT: 发送 SIGTERM 后等待退出的时间（秒）
        - 默认 2.0 秒

    PROCDRAIN_KILL_TIMEOUT: 发送 SIGKILL 后等待回收的时间（秒）
        - 默认 1.0 秒

    PROCDRAIN_CHUNK_SIZE: 每次读取管道的最大字节数
        - 默认 4096
        - 限制在 1-1048576 范围

    PROCDRAIN_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (日志输出到临时文件)
        - false/0/no = 关闭 (默认，日志输出到 stderr)
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config"]

DEFAULT_POLL_INTERVAL = 0.1
DEFAULT_TERM_TIMEOUT = 2.0
DEFAULT_KILL_TIMEOUT = 1.0
DEFAULT_CHUNK_SIZE = 4096


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_float(
    value: str | None,
    default: float,
    minimum: float,
    maximum: float,
) -> float:
    """解析浮点数环境变量，无效值返回默认值，超出范围则截断。"""
    if not value:
        return default
    try:
        number = float(value)
    except ValueError:
        return default
    return max(minimum, min(number, maximum))


def _parse_int(value: str | None, default: int, minimum: int, maximum: int) -> int:
    """解析整数环境变量，规则同 _parse_float。"""
    if not value:
        return default
    try:
        number = int(value)
    except ValueError:
        return default
    return max(minimum, min(number, maximum))


@dataclass
class Config:
    """procdrain 配置。

    Attributes:
        quiet: 静默模式（丢弃输出）
        poll_interval: 有界等待的轮询间隔（秒）
        term_timeout: SIGTERM 后的等待时间（秒）
        kill_timeout: SIGKILL 后的等待时间（秒）
        chunk_size: 每次读取的最大字节数
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
    """

    quiet: bool = False
    poll_interval: float = DEFAULT_POLL_INTERVAL
    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    chunk_size: int = DEFAULT_CHUNK_SIZE
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(quiet={self.quiet}, "
            f"poll_interval={self.poll_interval}, "
            f"term_timeout={self.term_timeout}, "
            f"kill_timeout={self.kill_timeout}, "
            f"chunk_size={self.chunk_size}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    """生成日志文件路径。

    Returns:
        临时目录下的日志文件绝对路径
    """
    log_dir = Path(tempfile.gettempdir()) / "procdrain"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"procdrain_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("PROCDRAIN_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        quiet=_parse_bool(os.environ.get("PROCDRAIN_QUIET"), default=False),
        poll_interval=_parse_float(
            os.environ.get("PROCDRAIN_POLL_INTERVAL"),
            DEFAULT_POLL_INTERVAL, 0.01, 5.0,
        ),
        term_timeout=_parse_float(
            os.environ.get("PROCDRAIN_TERM_TIMEOUT"),
            DEFAULT_TERM_TIMEOUT, 0.0, 60.0,
        ),
        kill_timeout=_parse_float(
            os.environ.get("PROCDRAIN_KILL_TIMEOUT"),
            DEFAULT_KILL_TIMEOUT, 0.0, 60.0,
        ),
        chunk_size=_parse_int(
            os.environ.get("PROCDRAIN_CHUNK_SIZE"),
            DEFAULT_CHUNK_SIZE, 1, 1024 * 1024,
        ),
        log_debug=log_debug,
        log_file=log_file,
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
