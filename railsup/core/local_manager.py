"""
本地版本管理模块。

提供本地已安装 Ruby 版本的扫描和查询功能。

文件系统是唯一的事实来源：每次查询都重新扫描安装目录，不做缓存，
这样用户手动 rm -rf 某个版本后结果立即正确。
"""

import os
from pathlib import Path
from typing import List, Optional

from railsup.core import version_utils
from railsup.core.interfaces import ILocalManager, RailsupError
from railsup.core.paths import RailsupPaths
from railsup.utils.logger import get_logger

logger = get_logger()


class LocalManagerError(RailsupError):
    """本地管理错误异常。"""
    pass


class VersionNotFoundError(LocalManagerError):
    """版本未找到错误异常。"""
    pass


class NotInstalledError(VersionNotFoundError):
    """操作的目标版本未安装。"""

    def __init__(self, version: str):
        self.version = version
        super().__init__(
            f"Ruby {version} 未安装\n运行: railsup ruby install {version}"
        )


class LocalManager(ILocalManager):
    """
    本地版本管理器类。

    扫描 <base>/ruby 下的直接子目录，只有包含可执行 bin/ruby 的目录才算已安装。
    下载到一半、解压不完整或名字不是版本号的目录都被忽略，不报错，
    解析器永远看不到它们。
    实现 ILocalManager 抽象接口。
    """

    def __init__(self, paths: Optional[RailsupPaths] = None):
        """
        初始化本地版本管理器。

        参数:
            paths: 目录布局
        """
        self.paths = paths or RailsupPaths()

    def _validate_installation(self, version_dir: Path) -> bool:
        """
        验证目录是否是完整的 Ruby 安装。

        参数:
            version_dir: 版本目录

        返回:
            包含可执行的 bin/ruby 时返回 True
        """
        executable = version_dir / "bin" / "ruby"
        return executable.is_file() and os.access(executable, os.X_OK)

    def list_installed(self) -> List[str]:
        """
        扫描本地已安装的 Ruby 版本。

        返回:
            版本号列表，按语义版本降序排列
        """
        ruby_dir = self.paths.ruby_dir
        if not ruby_dir.is_dir():
            logger.debug(f"安装目录不存在: {ruby_dir}")
            return []

        versions = []
        for entry in ruby_dir.iterdir():
            name = entry.name
            if name.startswith("."):
                continue
            if not entry.is_dir():
                continue
            if not version_utils.is_version_id(name):
                logger.debug(f"目录名不是版本号，跳过: {entry}")
                continue
            if not self._validate_installation(entry):
                logger.debug(f"目录缺少可执行的 bin/ruby，视为不完整安装: {entry}")
                continue
            versions.append(name)

        return version_utils.sort_versions_desc(versions)

    def is_installed(self, version: str) -> bool:
        """
        判断指定版本是否已安装。

        参数:
            version: 版本号

        返回:
            已安装返回 True
        """
        if not version_utils.is_version_id(version):
            return False
        return self._validate_installation(self.paths.ruby_root(version))

    def latest(self) -> Optional[str]:
        """
        返回已安装的最新版本。

        返回:
            语义版本最大的版本号，未安装任何版本时返回 None
        """
        return version_utils.latest_version(self.list_installed())
