"""
shell 脚本生成模块。

把 ResolvedEnvironment 渲染为 shell 初始化脚本。只生成文本，不安装、
不修改任何持久状态。

- POSIX（bash、zsh、sh）: export NAME="value"，PATH 加在已有的 $PATH 前面
- fish: set -gx NAME value，PATH 用 fish 的空格分隔列表形式
"""

import os
import re
from enum import Enum
from typing import List, Mapping, Optional

from railsup.core.env_manager import ResolvedEnvironment
from railsup.utils.input_validator import InputValidator


class ShellFamily(str, Enum):
    """shell 语法族。"""

    POSIX = "posix"
    FISH = "fish"


SHELL_NAMES = {
    "bash": ShellFamily.POSIX,
    "zsh": ShellFamily.POSIX,
    "sh": ShellFamily.POSIX,
    "dash": ShellFamily.POSIX,
    "ksh": ShellFamily.POSIX,
    "posix": ShellFamily.POSIX,
    "fish": ShellFamily.FISH,
}

_FISH_SAFE = re.compile(r'^[A-Za-z0-9_@%+=:,./-]+$')


def family_for_shell(name: Optional[str]) -> ShellFamily:
    """
    根据 shell 名称或路径确定语法族。

    无法识别或为空时返回 POSIX。

    参数:
        name: shell 名称，例如 "zsh" 或 "/usr/local/bin/fish"
    """
    return SHELL_NAMES.get(InputValidator.sanitize_shell_name(name or ""), ShellFamily.POSIX)


def detect_shell_family(
    explicit: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ShellFamily:
    """
    确定要生成的 shell 语法族。

    显式指定时直接使用，否则读取环境中的 $SHELL。

    参数:
        explicit: 调用方指定的 shell 名称
        environ: 环境变量，默认 os.environ
    """
    if explicit:
        return family_for_shell(explicit)
    environ = os.environ if environ is None else environ
    return family_for_shell(environ.get("SHELL"))


def _posix_quote(value: str) -> str:
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("$", "\\$")
        .replace("`", "\\`")
    )
    return f'"{escaped}"'


def _fish_quote(value: str) -> str:
    if _FISH_SAFE.match(value):
        return value
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def _header(env: ResolvedEnvironment, install_hint: str) -> List[str]:
    return [
        f"# railsup shell 集成 (Ruby {env.version})",
        "# 添加到 shell 配置文件中:",
        f"#   {install_hint}",
        "#",
        "# 注意: 放在 rbenv/asdf/rvm 初始化之后，railsup 的 Ruby 才会排在 PATH 最前面。",
        "",
    ]


def render_posix(env: ResolvedEnvironment) -> str:
    """渲染 bash/zsh/sh 可 eval 的脚本。"""
    lines = _header(env, 'eval "$(railsup shell-init)"  # ~/.zshrc 或 ~/.bashrc')
    prefix = _posix_quote(env.path_prefix)[1:-1]
    lines.append(f'export PATH="{prefix}:$PATH"')
    for name, value in env.variables:
        lines.append(f"export {name}={_posix_quote(value)}")
    return "\n".join(lines) + "\n"


def render_fish(env: ResolvedEnvironment) -> str:
    """渲染 fish 可 source 的脚本。"""
    lines = _header(env, "railsup shell-init | source  # ~/.config/fish/config.fish")
    entries = " ".join(_fish_quote(entry) for entry in env.path_entries)
    lines.append(f"set -gx PATH {entries} $PATH")
    for name, value in env.variables:
        lines.append(f"set -gx {name} {_fish_quote(value)}")
    return "\n".join(lines) + "\n"


def render(env: ResolvedEnvironment, shell_family: ShellFamily) -> str:
    """
    按语法族渲染 shell 初始化脚本。

    参数:
        env: 运行环境
        shell_family: 语法族

    返回:
        只包含 shell 语法和注释行的文本
    """
    if shell_family == ShellFamily.FISH:
        return render_fish(env)
    return render_posix(env)
