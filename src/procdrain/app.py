"""procdrain 命令行入口。

包含日志配置和 CLI 主入口点。

用法:
    procdrain [--timeout SECONDS] [--quiet] [--json] -- CMD [ARGS...]

退出码:
    子进程的退出码（被信号终止时为 128 + 信号值）
    124 = 超时被终止
    127 = 命令无法启动
    130 = 等待被中断
"""

from __future__ import annotations

import argparse
import logging
import subprocess
import sys
import time
from collections.abc import Sequence

from . import __version__
from .config import Config, get_config
from .report import Outcome, SupervisionReport
from .runtime import Exited, ProcessSupervisor, ProcessTimeoutError

__all__ = ["build_parser", "configure_logging", "run", "main"]

logger = logging.getLogger(__name__)

EXIT_TIMEOUT = 124
EXIT_NOT_FOUND = 127
EXIT_INTERRUPTED = 130

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(config: Config) -> None:
    """配置日志输出。

    - 默认模式：输出到 stderr，procdrain 命名空间为 INFO
    - LOG_DEBUG 模式：输出到临时文件，procdrain 命名空间为 DEBUG
    """
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # root logger（第三方库）保持 WARNING，减少噪音
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    logging.getLogger("procdrain").setLevel(log_level)


def build_parser() -> argparse.ArgumentParser:
    """构建命令行参数解析器。"""
    parser = argparse.ArgumentParser(
        prog="procdrain",
        description="Run a command, drain its stdout/stderr, and exit with its code.",
    )
    parser.add_argument(
        "--timeout", type=float, default=None,
        help="Kill the command after this many seconds",
    )
    parser.add_argument(
        "--quiet", action="store_true",
        help="Discard the command's output (it is still read)",
    )
    parser.add_argument(
        "--json", action="store_true",
        help="Print a JSON supervision report to stdout when done",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Command to run")
    return parser


def _exit_code_of(returncode: int) -> int:
    # Popen reports death by signal N as -N
    return returncode if returncode >= 0 else 128 - returncode


def run(argv: Sequence[str] | None = None) -> int:
    """解析参数、启动并监督子进程。

    Returns:
        进程退出码
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        parser.error("no command given")

    config = get_config()
    quiet = args.quiet or config.quiet

    try:
        process = subprocess.Popen(
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as e:
        logger.error(f"Cannot start {command[0]}: {e}")
        return EXIT_NOT_FOUND

    supervisor = ProcessSupervisor(process, quiet=quiet)
    logger.debug(f"Started pid={process.pid} argv={command} timeout={args.timeout}")

    outcome: Outcome
    returncode: int | None = None
    start = time.monotonic()
    try:
        result = supervisor.wait_for_result(args.timeout)
    except ProcessTimeoutError as e:
        logger.error(str(e))
        outcome = "timed_out"
        exit_code = EXIT_TIMEOUT
    except KeyboardInterrupt:
        # The drains are already cancelled and joined; we own the child here
        logger.info(f"Interrupted, terminating pid={process.pid}")
        supervisor.terminate()
        outcome = "interrupted"
        exit_code = EXIT_INTERRUPTED
    else:
        if isinstance(result, Exited):
            outcome = "exited"
            returncode = result.returncode
            exit_code = _exit_code_of(result.returncode)
        else:
            outcome = "interrupted"
            exit_code = EXIT_INTERRUPTED
    elapsed = time.monotonic() - start

    if args.json:
        report = SupervisionReport.from_supervisor(
            supervisor,
            outcome=outcome,
            returncode=returncode,
            timeout=args.timeout,
            elapsed=elapsed,
        )
        sys.stdout.write(report.model_dump_json() + "\n")
        sys.stdout.flush()

    return exit_code


def main() -> None:
    """主入口点。"""
    configure_logging(get_config())
    sys.exit(run())


if __name__ == "__main__":
    main()
