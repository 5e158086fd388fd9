"""
版本管理器模块。

提供 Ruby 版本的安装、删除和默认版本设置功能。

安装时先解压到安装目录下的隐藏临时目录，再一次 rename 到最终位置。
进程在下载或解压过程中崩溃时，最终位置不会出现半成品目录，注册表也就
不会把它当作已安装。
"""

import os
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional

from railsup.core import version_utils
from railsup.core.config_manager import ConfigManager
from railsup.core.download_manager import DownloadManager
from railsup.core.interfaces import (
    IConfigManager,
    IDownloadManager,
    ILocalManager,
    IVersionManager,
    ProgressCallback,
    RailsupError,
)
from railsup.core.local_manager import LocalManager, NotInstalledError
from railsup.core.paths import RailsupPaths
from railsup.utils.input_validator import InputValidationError
from railsup.utils.logger import get_logger

logger = get_logger()


class VersionManagerError(RailsupError):
    """版本管理错误异常。"""
    pass


class AlreadyInstalledError(VersionManagerError):
    """要安装的版本已经安装。"""

    def __init__(self, version: str):
        self.version = version
        super().__init__(
            f"Ruby {version} 已安装\n如需重新安装，请使用: railsup ruby install {version} --force"
        )


class RemovalRequiresConfirmationError(VersionManagerError):
    """删除默认版本或唯一版本需要确认。"""

    REASON_DEFAULT = "default"
    REASON_ONLY = "only"

    def __init__(self, version: str, reason: str):
        self.version = version
        self.reason = reason
        if reason == self.REASON_DEFAULT:
            detail = f"Ruby {version} 是当前的默认版本"
        else:
            detail = f"Ruby {version} 是唯一已安装的版本"
        super().__init__(
            f"{detail}，删除后可能没有可用的 Ruby\n"
            f"确认删除请运行: railsup ruby remove {version} --yes"
        )


class InstallationError(VersionManagerError):
    """安装错误异常。"""
    pass


class VersionManager(IVersionManager):
    """
    版本管理器类。

    负责 Ruby 版本的安装、删除和默认版本管理。
    本类作为协调者，将具体工作委托给各个专用模块。
    实现 IVersionManager 抽象接口。
    """

    def __init__(
        self,
        paths: Optional[RailsupPaths] = None,
        local_manager: Optional[ILocalManager] = None,
        config_manager: Optional[IConfigManager] = None,
        download_manager: Optional[IDownloadManager] = None,
    ):
        """
        初始化版本管理器。

        参数:
            paths: 目录布局
            local_manager: 已安装版本注册表
            config_manager: 配置管理器
            download_manager: 下载管理器
        """
        self.paths = paths or RailsupPaths()
        self.local_manager = local_manager or LocalManager(self.paths)
        self.config_manager = config_manager or ConfigManager(self.paths)
        self.download_manager = download_manager or DownloadManager(self.paths)

    def list_installed(self) -> List[str]:
        """返回已安装版本，新版本在前。"""
        return self.local_manager.list_installed()

    def _sweep_leftovers(self, version: str) -> None:
        """删除之前中断的安装或删除留下的隐藏目录。"""
        for pattern in (f".{version}.tmp-*", f".{version}.old-*"):
            for leftover in self.paths.ruby_dir.glob(pattern):
                if leftover.is_dir():
                    logger.info(f"清理残留目录: {leftover}")
                    shutil.rmtree(leftover, ignore_errors=True)

    def _make_staging_dir(self, version: str) -> Path:
        self.paths.ensure_dirs()
        self._sweep_leftovers(version)
        return Path(tempfile.mkdtemp(prefix=f".{version}.tmp-", dir=self.paths.ruby_dir))

    def _commit(self, version: str, staging_dir: Path, final_dir: Path) -> None:
        """
        把临时目录改名为最终的版本目录。

        最终位置已有目录（--force 重装或残留的不完整目录）时，先把旧目录移开，
        新目录就位后再删除旧目录。
        """
        old_dir = None
        if final_dir.exists():
            old_dir = Path(tempfile.mkdtemp(prefix=f".{version}.old-", dir=self.paths.ruby_dir))
            os.rename(final_dir, old_dir / "tree")

        try:
            os.rename(staging_dir, final_dir)
        except OSError:
            if self.local_manager.is_installed(version):
                # 另一个进程已经抢先完成了同一版本的安装
                logger.warning(f"Ruby {version} 已由其他进程安装，丢弃本次解压结果")
                shutil.rmtree(staging_dir, ignore_errors=True)
            elif old_dir is not None:
                os.rename(old_dir / "tree", final_dir)
                raise
            else:
                raise
        finally:
            if old_dir is not None:
                shutil.rmtree(old_dir, ignore_errors=True)

    def install_version(
        self,
        version: str,
        force: bool = False,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Path:
        """
        下载并安装指定版本。

        参数:
            version: 版本号
            force: 已安装时是否重新安装
            progress_callback: 下载进度回调函数

        返回:
            安装目录

        抛出:
            AlreadyInstalledError: 已安装且未指定 force 时抛出
            FetchError: 下载、校验或解压失败时抛出
            InstallationError: 归档中没有可执行的 bin/ruby 时抛出
        """
        version = version_utils.normalize_version(version)
        if self.local_manager.is_installed(version) and not force:
            raise AlreadyInstalledError(version)

        final_dir = self.paths.ruby_root(version)
        staging_dir = self._make_staging_dir(version)
        logger.info(f"正在安装 Ruby {version}，临时目录: {staging_dir}")

        try:
            self.download_manager.fetch_and_extract(
                version, staging_dir, progress_callback, final_dir=final_dir
            )
            executable = staging_dir / "bin" / "ruby"
            if not (executable.is_file() and os.access(executable, os.X_OK)):
                raise InstallationError(f"Ruby {version} 的归档中没有可执行的 bin/ruby")
            self._commit(version, staging_dir, final_dir)
        except Exception:
            shutil.rmtree(staging_dir, ignore_errors=True)
            raise

        self.paths.gem_bin_dir(version).mkdir(parents=True, exist_ok=True)
        logger.info(f"成功安装 Ruby {version} 到 {final_dir}")
        return final_dir

    def remove_version(self, version: str, confirm: bool = False) -> None:
        """
        删除指定版本。

        删除默认版本或唯一已安装的版本需要 confirm=True。先删 gem 目录，再把
        Ruby 目录改名为隐藏目录后删除。中途崩溃时该版本要么仍完整可用，要么
        已从注册表中消失；隐藏的残留目录在下次安装该版本时清理。

        参数:
            version: 版本号
            confirm: 是否已确认

        抛出:
            NotInstalledError: 版本未安装时抛出
            RemovalRequiresConfirmationError: 需要确认但未确认时抛出
        """
        try:
            version = version_utils.normalize_version(version)
        except InputValidationError:
            raise NotInstalledError(version.strip())

        if not self.local_manager.is_installed(version):
            raise NotInstalledError(version)

        default = self.config_manager.get_default_ruby()
        is_default = default is not None and default.strip() == version
        if not confirm:
            if is_default:
                raise RemovalRequiresConfirmationError(
                    version, RemovalRequiresConfirmationError.REASON_DEFAULT
                )
            if self.local_manager.list_installed() == [version]:
                raise RemovalRequiresConfirmationError(
                    version, RemovalRequiresConfirmationError.REASON_ONLY
                )

        logger.info(f"正在删除 Ruby {version}")
        gem_home = self.paths.gem_home(version)
        if gem_home.exists():
            shutil.rmtree(gem_home)
            logger.debug(f"已删除 {gem_home}")
        ruby_root = self.paths.ruby_root(version)
        trash_dir = Path(tempfile.mkdtemp(prefix=f".{version}.old-", dir=self.paths.ruby_dir))
        os.rename(ruby_root, trash_dir / "tree")
        shutil.rmtree(trash_dir)
        logger.debug(f"已删除 {ruby_root}")

        if is_default:
            self.config_manager.set_default_ruby(None)
            logger.info(f"Ruby {version} 是默认版本，已清除默认设置")

        logger.info(f"已删除 Ruby {version}")

    def get_default_version(self) -> Optional[str]:
        """
        获取全局默认版本。

        返回:
            默认版本号，未设置返回 None
        """
        return self.config_manager.get_default_ruby()

    def set_default_version(self, version: str) -> None:
        """
        设置全局默认版本。

        参数:
            version: 版本号

        抛出:
            NotInstalledError: 版本未安装时抛出
        """
        try:
            version = version_utils.normalize_version(version)
        except InputValidationError:
            raise NotInstalledError(version.strip())

        if not self.local_manager.is_installed(version):
            raise NotInstalledError(version)

        self.config_manager.set_default_ruby(version)
        logger.info(f"默认 Ruby 版本已设置为 {version}")
