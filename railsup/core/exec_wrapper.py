"""
命令执行模块。

在指定 Ruby 版本的环境中运行命令。PATH 直接由 railsup 控制，rbenv/asdf/rvm
安装的 shim 会被排到后面。子进程的标准输入输出直接继承，退出码原样返回。
"""

import os
import shutil
import signal
import subprocess
from typing import Dict, Mapping, Optional, Sequence

from railsup.core.env_manager import ResolvedEnvironment
from railsup.core.interfaces import RailsupError
from railsup.utils.input_validator import InputValidator
from railsup.utils.logger import get_logger

logger = get_logger()

FORWARDED_SIGNALS = tuple(
    sig for sig in (
        getattr(signal, "SIGINT", None),
        getattr(signal, "SIGTERM", None),
        getattr(signal, "SIGHUP", None),
    )
    if sig is not None
)

COMMAND_NOT_FOUND_EXIT_CODE = 127


class ExecError(RailsupError):
    """命令无法执行。"""
    pass


def build_child_environ(
    env: ResolvedEnvironment,
    base_environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """
    构造子进程环境：当前进程环境的副本加上 Ruby 环境。

    参数:
        env: 运行环境
        base_environ: 基础环境，默认 os.environ

    返回:
        子进程使用的环境字典
    """
    return env.apply(os.environ if base_environ is None else base_environ)


def _exit_code_from_returncode(returncode: int) -> int:
    if returncode < 0:
        return 128 + (-returncode)
    return returncode


def _in_foreground_group() -> bool:
    """railsup 是否处在控制终端的前台进程组中。"""
    for fd in (0, 1, 2):
        try:
            return os.tcgetpgrp(fd) == os.getpgrp()
        except OSError:
            continue
    return False


def run(
    env: ResolvedEnvironment,
    command: str,
    args: Sequence[str] = (),
    base_environ: Optional[Mapping[str, str]] = None,
    cwd: Optional[str] = None,
) -> int:
    """
    在 Ruby 环境中运行命令并等待其结束。

    信号处理器在启动子进程之前安装，等待期间收到的 SIGTERM/SIGHUP 转发给
    子进程，railsup 自身不退出。终端按下 Ctrl-C 时内核已经把 SIGINT 发给了
    整个前台进程组，此时不再重复转发；railsup 不在前台进程组时照常转发。
    子进程启动前收到的信号在启动后补发。

    参数:
        env: 运行环境
        command: 命令名或路径
        args: 命令参数
        base_environ: 基础环境，默认 os.environ
        cwd: 工作目录

    返回:
        子进程退出码；子进程被信号 N 终止时返回 128+N

    抛出:
        ExecError: 命令不存在或无法执行时抛出
    """
    InputValidator.validate_command_arg(command)
    child_environ = build_child_environ(env, base_environ)

    executable = shutil.which(command, path=child_environ.get("PATH"))
    if executable is None:
        raise ExecError(f"找不到命令 '{command}'（Ruby {env.version}）")

    logger.debug(f"执行 {executable} {' '.join(args)}（Ruby {env.version}）")

    process = None
    pending = []

    def _send(signum):
        try:
            process.send_signal(signum)
        except ProcessLookupError:
            pass

    def _forward(signum, _frame):
        if process is None:
            pending.append(signum)
            return
        if signum == getattr(signal, "SIGINT", None) and _in_foreground_group():
            logger.debug("子进程与 railsup 同在前台进程组，已直接收到 SIGINT")
            return
        logger.debug(f"转发信号 {signum} 给子进程 {process.pid}")
        _send(signum)

    previous_handlers = {}
    for sig in FORWARDED_SIGNALS:
        try:
            previous_handlers[sig] = signal.signal(sig, _forward)
        except ValueError:
            # 不在主线程中时无法安装信号处理器
            break

    try:
        try:
            process = subprocess.Popen([executable, *args], env=child_environ, cwd=cwd)
        except OSError as e:
            raise ExecError(f"无法执行 '{command}': {e}") from e

        for signum in pending:
            logger.debug(f"补发启动前收到的信号 {signum} 给子进程 {process.pid}")
            _send(signum)

        returncode = process.wait()
    finally:
        for sig, handler in previous_handlers.items():
            signal.signal(sig, handler)

    exit_code = _exit_code_from_returncode(returncode)
    logger.debug(f"子进程退出码: {exit_code}")
    return exit_code
