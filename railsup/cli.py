"""
railsup 命令行接口模块。
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from railsup import __version__
from railsup.core import doctor, exec_wrapper, shell_emitter, version_utils
from railsup.core.config_manager import ConfigManager
from railsup.core.download_manager import DownloadManager
from railsup.core.env_manager import EnvManager
from railsup.core.exec_wrapper import ExecError, COMMAND_NOT_FOUND_EXIT_CODE
from railsup.core.interfaces import RailsupError
from railsup.core.local_manager import LocalManager
from railsup.core.paths import RailsupPaths
from railsup.core.remote_fetcher import DEFAULT_RUBY_VERSION, RemoteFetcher
from railsup.core.resolver import Resolver
from railsup.core.version_manager import VersionManager
from railsup.utils.input_validator import InputValidationError
from railsup.utils.logger import get_logger, setup_logger

logger = get_logger()

# 直接来自解释器目录的命令，其余命令先查 gem 目录
INTERPRETER_COMMANDS = {"ruby", "gem", "bundle", "bundler", "rake", "irb", "erb", "rdoc", "ri"}

SHELL_CHOICES = ["bash", "zsh", "sh", "fish"]


def create_parser() -> argparse.ArgumentParser:
    """
    创建并配置命令行参数解析器。

    返回:
        配置好的 ArgumentParser 实例
    """
    parser = argparse.ArgumentParser(
        prog="railsup",
        description="railsup - 安装和运行 Ruby on Rails 的更好方式",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例:
  railsup ruby install 4.0.1        安装 Ruby 4.0.1
  railsup ruby list                 列出已安装的 Ruby 版本
  railsup ruby default 4.0.1        设置默认 Ruby 版本
  railsup exec rails server         用 railsup 的 Ruby 运行命令
  eval "$(railsup shell-init)"      在 shell 中启用 railsup 的 Ruby
  railsup doctor                    检查安装和 PATH 中的问题
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="启用详细输出",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="命令",
        description="可用的 CLI 命令",
    )

    ruby_parser = subparsers.add_parser(
        "ruby",
        help="管理 Ruby 版本",
    )
    ruby_subparsers = ruby_parser.add_subparsers(
        dest="ruby_command",
        title="ruby 子命令",
    )

    install_parser = ruby_subparsers.add_parser(
        "install",
        help="下载并安装指定版本",
    )
    install_parser.add_argument(
        "version",
        help=f"要安装的版本（例如 4.0.1，latest 表示 {DEFAULT_RUBY_VERSION}）",
    )
    install_parser.add_argument(
        "--force",
        "-f",
        action="store_true",
        help="已安装时重新安装",
    )

    list_parser = ruby_subparsers.add_parser(
        "list",
        help="列出已安装的版本",
    )
    list_parser.add_argument(
        "--available",
        "-a",
        action="store_true",
        help="显示可下载的版本",
    )

    default_parser = ruby_subparsers.add_parser(
        "default",
        help="设置默认版本",
    )
    default_parser.add_argument(
        "version",
        help="要设为默认的版本",
    )

    remove_parser = ruby_subparsers.add_parser(
        "remove",
        help="删除已安装的版本",
    )
    remove_parser.add_argument(
        "version",
        help="要删除的版本",
    )
    remove_parser.add_argument(
        "--yes",
        "-y",
        action="store_true",
        help="确认删除默认版本或唯一版本",
    )

    ruby_subparsers.add_parser(
        "clear-cache",
        help="清空下载缓存",
    )

    which_parser = subparsers.add_parser(
        "which",
        help="显示命令的路径（ruby、gem、bundle、rails 等）",
    )
    which_parser.add_argument(
        "name",
        help="要查找的命令",
    )

    exec_parser = subparsers.add_parser(
        "exec",
        help="在 railsup 的 Ruby 环境中运行命令",
    )
    exec_parser.add_argument(
        "--ruby",
        type=str,
        default=None,
        help="使用指定的 Ruby 版本",
    )
    exec_parser.add_argument(
        "argv",
        nargs=argparse.REMAINDER,
        help="要运行的命令及参数",
    )

    shell_init_parser = subparsers.add_parser(
        "shell-init",
        help="输出 shell 初始化脚本",
    )
    shell_init_parser.add_argument(
        "--shell",
        choices=SHELL_CHOICES,
        default=None,
        help="目标 shell（默认根据 $SHELL 检测）",
    )
    shell_init_parser.add_argument(
        "--ruby",
        type=str,
        default=None,
        help="使用指定的 Ruby 版本",
    )

    doctor_parser = subparsers.add_parser(
        "doctor",
        help="检查安装状态、shell 集成和版本管理器冲突",
    )
    doctor_parser.add_argument(
        "--json",
        action="store_true",
        help="以 JSON 格式输出诊断报告",
    )

    return parser


def _error(message: str) -> None:
    print(f"错误: {message}", file=sys.stderr)


def _get_managers(paths: Optional[RailsupPaths] = None):
    """
    获取管理器实例。

    返回:
        包含 VersionManager、Resolver、EnvManager 的元组
    """
    paths = paths or RailsupPaths()
    local_manager = LocalManager(paths)
    config_manager = ConfigManager(paths)
    version_manager = VersionManager(
        paths,
        local_manager=local_manager,
        config_manager=config_manager,
        download_manager=DownloadManager(paths),
    )
    resolver = Resolver(local_manager, config_manager)
    env_manager = EnvManager(paths)
    return version_manager, resolver, env_manager


def run_cli(args: argparse.Namespace, paths: Optional[RailsupPaths] = None) -> int:
    """
    运行命令行接口。

    参数:
        args: 解析后的命令行参数
        paths: 目录布局，默认使用 $RAILSUP_HOME 或 ~/.railsup

    返回:
        退出码（0 表示成功）
    """
    paths = paths or RailsupPaths()
    verbose = getattr(args, "verbose", False)
    setup_logger(
        level=logging.DEBUG if verbose else logging.INFO,
        console_level=logging.DEBUG if verbose else logging.WARNING,
        log_dir=paths.logs_dir,
    )

    if args.command is None:
        _error("未指定命令。使用 --help 查看帮助信息。")
        return 1

    command_handlers = {
        "ruby": handle_ruby,
        "which": handle_which,
        "exec": handle_exec,
        "shell-init": handle_shell_init,
        "doctor": handle_doctor,
    }

    handler = command_handlers.get(args.command)
    if handler is None:
        _error(f"未知命令: {args.command}")
        return 1

    try:
        return handler(args, paths)
    except ExecError as e:
        logger.debug(f"命令执行失败: {e}")
        _error(str(e))
        return COMMAND_NOT_FOUND_EXIT_CODE
    except (RailsupError, InputValidationError) as e:
        logger.debug(f"{args.command} 命令失败: {e!r}")
        _error(str(e))
        return 1


def handle_ruby(args: argparse.Namespace, paths: RailsupPaths) -> int:
    """
    处理 ruby 命令：分派到各个子命令。
    """
    ruby_handlers = {
        "install": handle_install,
        "list": handle_list,
        "default": handle_default,
        "remove": handle_remove,
        "clear-cache": handle_clear_cache,
    }

    handler = ruby_handlers.get(getattr(args, "ruby_command", None))
    if handler is None:
        _error("未指定 ruby 子命令。使用 railsup ruby --help 查看帮助信息。")
        return 1
    return handler(args, paths)


def handle_install(args: argparse.Namespace, paths: RailsupPaths) -> int:
    """
    处理 ruby install 命令：下载并安装指定版本。

    安装后只有这一个版本且尚未设置默认版本时，把它设为默认版本。

    参数:
        args: 解析后的命令行参数
        paths: 目录布局

    返回:
        退出码
    """
    version = DEFAULT_RUBY_VERSION if args.version == "latest" else args.version
    version_manager, _, _ = _get_managers(paths)

    print(f"正在安装 Ruby {version}...")

    def progress(downloaded: int, total: int):
        if total <= 0:
            print(f"\r已下载 {downloaded} 字节", end="", flush=True)
            return
        percent = int(downloaded / total * 100)
        bar_len = 40
        filled = int(bar_len * percent / 100)
        bar = "#" * filled + "-" * (bar_len - filled)
        print(f"\r[{bar}] {percent}% ({downloaded}/{total} 字节)", end="", flush=True)

    install_dir = version_manager.install_version(version, force=args.force, progress_callback=progress)
    version = install_dir.name
    print(f"\n成功安装 Ruby {version}")

    if version_manager.list_installed() == [version] and version_manager.get_default_version() is None:
        version_manager.set_default_version(version)
        print("  已设为默认 Ruby 版本")

    return 0


def handle_list(args: argparse.Namespace, paths: RailsupPaths) -> int:
    """
    处理 ruby list 命令：列出已安装或可下载的版本。

    参数:
        args: 解析后的命令行参数
        paths: 目录布局

    返回:
        退出码
    """
    version_manager, _, _ = _get_managers(paths)
    installed = version_manager.list_installed()

    if args.available:
        print("可下载的 Ruby 版本:")
        for version in RemoteFetcher().get_remote_versions():
            marker = " (已安装)" if version in installed else ""
            print(f"  {version}{marker}")
        return 0

    if not installed:
        print("尚未安装任何 Ruby 版本。")
        print(f"运行: railsup ruby install {DEFAULT_RUBY_VERSION}")
        return 0

    default = version_manager.get_default_version()
    print("已安装的 Ruby 版本:")
    for version in installed:
        if version == default:
            print(f"  {version} (默认)")
        else:
            print(f"  {version}")
        if args.verbose:
            print(f"     路径: {paths.ruby_root(version)}")

    return 0


def handle_default(args: argparse.Namespace, paths: RailsupPaths) -> int:
    """
    处理 ruby default 命令：设置默认版本。
    """
    version_manager, _, _ = _get_managers(paths)
    version_manager.set_default_version(args.version)
    print(f"默认 Ruby 版本已设置为 {version_manager.get_default_version()}")
    return 0


def handle_remove(args: argparse.Namespace, paths: RailsupPaths) -> int:
    """
    处理 ruby remove 命令：删除指定版本。
    """
    version_manager, _, _ = _get_managers(paths)
    try:
        version = version_utils.normalize_version(args.version)
    except InputValidationError:
        version = args.version.strip()

    print(f"正在删除 Ruby {version}...")
    version_manager.remove_version(version, confirm=args.yes)
    print(f"已删除 Ruby {version}")

    if version_manager.get_default_version() is None and version_manager.list_installed():
        print("  当前没有默认版本，可通过以下命令设置:")
        print("    railsup ruby default <version>")

    return 0


def handle_clear_cache(args: argparse.Namespace, paths: RailsupPaths) -> int:
    """
    处理 ruby clear-cache 命令：清空下载缓存。
    """
    count, total_size = DownloadManager(paths).clear_cache()
    if count == 0:
        print("缓存已经是空的。")
    else:
        print(f"已清理 {count} 个缓存文件 ({total_size / 1024 / 1024:.1f} MB)")
    return 0


def find_executable(paths: RailsupPaths, version: str, name: str) -> Path:
    """
    查找某个命令在指定版本下的路径。

    解释器自带的命令只看 Ruby bin 目录；其余命令先看 gem bin 目录，再看 Ruby bin 目录。

    参数:
        paths: 目录布局
        version: Ruby 版本号
        name: 命令名

    返回:
        命令路径（可能不存在，调用方需要检查）
    """
    if name == "bundler":
        name = "bundle"
    ruby_path = paths.ruby_bin_dir(version) / name
    if name in INTERPRETER_COMMANDS:
        return ruby_path
    gem_path = paths.gem_bin_dir(version) / name
    return gem_path if gem_path.exists() else ruby_path


def handle_which(args: argparse.Namespace, paths: RailsupPaths) -> int:
    """
    处理 which 命令：显示命令在当前解析版本下的路径。
    """
    _, resolver, _ = _get_managers(paths)
    resolution = resolver.resolve()
    path = find_executable(paths, resolution.version, args.name)

    if not path.exists():
        _error(f"Ruby {resolution.version} 中找不到 {args.name}\n检查过的路径: {path}")
        return 1

    print(path)
    return 0


def handle_exec(args: argparse.Namespace, paths: RailsupPaths) -> int:
    """
    处理 exec 命令：在解析出的 Ruby 环境中运行命令，返回子进程的退出码。
    """
    argv = list(args.argv)
    if argv and argv[0] == "--":
        argv = argv[1:]
    if not argv:
        _error("未指定要运行的命令。\n用法: railsup exec <command> [args...]")
        return 1

    _, resolver, env_manager = _get_managers(paths)
    resolution = resolver.resolve(override=args.ruby)
    env = env_manager.build_env(resolution.version)
    return exec_wrapper.run(env, argv[0], argv[1:])


def handle_shell_init(args: argparse.Namespace, paths: RailsupPaths) -> int:
    """
    处理 shell-init 命令：输出 shell 初始化脚本。

    版本在生成脚本时解析一次并写死在输出中。stdout 只输出脚本，
    诊断信息都写到 stderr。
    """
    _, resolver, env_manager = _get_managers(paths)
    resolution = resolver.resolve(override=args.ruby)
    env = env_manager.build_env(resolution.version)
    family = shell_emitter.detect_shell_family(args.shell, os.environ)
    sys.stdout.write(shell_emitter.render(env, family))
    return 0


def handle_doctor(args: argparse.Namespace, paths: RailsupPaths) -> int:
    """
    处理 doctor 命令：检查安装状态、shell 集成和 PATH 中的冲突。

    只读取状态，不修改任何文件。
    """
    version_manager, resolver, _ = _get_managers(paths)
    report = doctor.collect_diagnostics(
        version_manager.local_manager,
        version_manager.config_manager,
        resolver,
    )
    if args.json:
        print(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))
    else:
        sys.stdout.write(doctor.format_report(report, verbose=args.verbose))
    return 0
