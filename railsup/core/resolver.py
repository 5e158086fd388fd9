"""
版本解析模块。

按固定优先级从多个来源中选出唯一的 Ruby 版本：

1. 调用方显式指定的版本（--ruby，或自动安装时刚装好的版本）
2. 最近的项目版本声明
3. 全局默认版本
4. 已安装的最新版本

第一个给出版本号的层级决定结果。该版本未安装时直接报错并指明层级，
不会退回到下一层级。
只有某一层级完全没有意见时才继续看下一层级。
"""

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from railsup.core import version_utils
from railsup.core.config_manager import ConfigManager
from railsup.core.interfaces import ILocalManager, RailsupError
from railsup.core.local_manager import VersionNotFoundError
from railsup.core.project import find_project_version
from railsup.core.remote_fetcher import DEFAULT_RUBY_VERSION
from railsup.utils.input_validator import InputValidationError
from railsup.utils.logger import get_logger

logger = get_logger()


class Tier(str, Enum):
    """解析优先级层级。"""

    OVERRIDE = "override"
    PROJECT = "project"
    DEFAULT = "default"
    LATEST = "latest"


_TIER_HINTS = {
    Tier.OVERRIDE: "命令行指定",
    Tier.PROJECT: "项目声明 (railsup.toml / .ruby-version)",
    Tier.DEFAULT: "全局默认 (config.toml)",
    Tier.LATEST: "已安装的最新版本",
}


class NoRubyInstalledError(RailsupError):
    """没有任何层级给出版本号，且本地没有安装任何版本。"""

    def __init__(self):
        super().__init__(
            "尚未安装任何 Ruby 版本\n"
            f"运行: railsup ruby install {DEFAULT_RUBY_VERSION}"
        )


class VersionNotInstalledError(VersionNotFoundError):
    """某个层级指定的版本未安装。"""

    def __init__(self, requested: str, tier: Tier):
        self.requested = requested
        self.tier = tier
        super().__init__(
            f"Ruby {requested} 未安装（来源: {_TIER_HINTS[tier]}）\n"
            f"运行: railsup ruby install {requested}"
        )


@dataclass(frozen=True)
class Resolution:
    """解析结果：版本号以及决定它的层级。"""

    version: str
    tier: Tier


def _check_tier(requested: str, tier: Tier, local_manager: ILocalManager) -> Resolution:
    try:
        version = version_utils.normalize_version(requested)
    except InputValidationError:
        logger.debug(f"{tier.value} 层级给出的版本号无法识别: {requested!r}")
        raise VersionNotInstalledError(requested.strip(), tier)

    if not local_manager.is_installed(version):
        raise VersionNotInstalledError(version, tier)

    logger.debug(f"解析到 Ruby {version}（层级: {tier.value}）")
    return Resolution(version=version, tier=tier)


def resolve_version(
    local_manager: ILocalManager,
    override: Optional[str] = None,
    project: Optional[str] = None,
    default: Optional[str] = None,
) -> Resolution:
    """
    按优先级解析 Ruby 版本。

    纯函数：只依赖传入的参数和 local_manager 当前看到的文件系统状态。

    参数:
        local_manager: 已安装版本注册表
        override: 显式指定的版本
        project: 项目声明的版本
        default: 全局默认版本

    返回:
        Resolution，其中的版本在解析时刻一定已安装

    抛出:
        VersionNotInstalledError: 第一个给出意见的层级指定的版本未安装
        NoRubyInstalledError: 所有层级都没有意见
    """
    for requested, tier in (
        (override, Tier.OVERRIDE),
        (project, Tier.PROJECT),
        (default, Tier.DEFAULT),
    ):
        if requested is not None and requested.strip():
            return _check_tier(requested, tier, local_manager)

    latest = local_manager.latest()
    if latest is None:
        raise NoRubyInstalledError()
    logger.debug(f"解析到 Ruby {latest}（层级: latest）")
    return Resolution(version=latest, tier=Tier.LATEST)


class Resolver:
    """
    解析器。

    每次 resolve 都重新读取配置和项目声明，再调用 resolve_version。
    """

    def __init__(
        self,
        local_manager: ILocalManager,
        config_manager: ConfigManager,
        project_lookup: Callable[[Path], Optional[str]] = find_project_version,
    ):
        self.local_manager = local_manager
        self.config_manager = config_manager
        self.project_lookup = project_lookup

    def resolve(self, override: Optional[str] = None, cwd: Optional[Path] = None) -> Resolution:
        """
        解析当前调用应使用的 Ruby 版本。

        参数:
            override: 显式指定的版本
            cwd: 查找项目声明的起始目录，默认是当前工作目录

        返回:
            Resolution
        """
        if override is not None and override.strip():
            return resolve_version(self.local_manager, override=override)

        project = self.project_lookup(Path(cwd) if cwd is not None else Path(os.getcwd()))
        default = self.config_manager.get_default_ruby()
        return resolve_version(
            self.local_manager,
            project=project,
            default=default,
        )
