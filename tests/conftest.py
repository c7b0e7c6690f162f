"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import os
import subprocess
import sys
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

# 测试用子进程脚本
FAKE_CHILD = Path(__file__).parent / "fixtures" / "fake_child.py"

IS_WINDOWS = sys.platform == "win32"


@pytest.fixture(autouse=True)
def clean_config() -> Iterator[None]:
    """清除 PROCDRAIN_* 环境变量并重新加载配置。"""
    from procdrain.config import reload_config

    saved = {k: v for k, v in os.environ.items() if k.startswith("PROCDRAIN_")}
    for key in saved:
        del os.environ[key]
    reload_config()
    yield
    os.environ.update(saved)
    reload_config()


@pytest.fixture
def fake_child_argv() -> Callable[..., list[str]]:
    """构造 fake_child.py 的命令行。"""

    def _argv(*args: str) -> list[str]:
        return [sys.executable, str(FAKE_CHILD), *args]

    return _argv


@pytest.fixture
def spawn(fake_child_argv) -> Iterator[Callable[..., subprocess.Popen]]:
    """启动 fake_child.py，stdout/stderr 均为管道；测试结束后清理残留进程。"""
    processes: list[subprocess.Popen] = []

    def _spawn(*args: str, **kwargs) -> subprocess.Popen:
        kwargs.setdefault("stdin", subprocess.DEVNULL)
        kwargs.setdefault("stdout", subprocess.PIPE)
        kwargs.setdefault("stderr", subprocess.PIPE)
        process = subprocess.Popen(fake_child_argv(*args), **kwargs)
        processes.append(process)
        return process

    yield _spawn

    for process in processes:
        if process.poll() is None:
            process.kill()
            process.wait()
        for stream in (process.stdout, process.stderr):
            if stream is not None:
                stream.close()
