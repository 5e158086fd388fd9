"""
核心模块抽象接口定义。

定义 ConfigManager、LocalManager、DownloadManager、VersionManager 等核心模块的抽象接口。
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, List, Optional


class RailsupError(Exception):
    """railsup 所有可预期错误的基类，CLI 统一捕获后输出一条提示。"""
    pass


ProgressCallback = Callable[[int, int], None]


class IConfigManager(ABC):
    """配置管理器抽象接口。"""

    @abstractmethod
    def load_config(self) -> dict[str, Any]:
        """从磁盘读取配置。"""
        pass

    @abstractmethod
    def save_config(self, config: dict[str, Any]) -> None:
        """原子地保存配置到文件。"""
        pass

    @abstractmethod
    def get_default_ruby(self) -> Optional[str]:
        """获取全局默认 Ruby 版本。"""
        pass

    @abstractmethod
    def set_default_ruby(self, version: Optional[str]) -> None:
        """写入（或清除）全局默认 Ruby 版本，不做安装校验。"""
        pass


class ILocalManager(ABC):
    """本地版本管理器（已安装版本注册表）抽象接口。"""

    @abstractmethod
    def list_installed(self) -> List[str]:
        """扫描安装目录，返回已安装的版本号（新版本在前）。"""
        pass

    @abstractmethod
    def is_installed(self, version: str) -> bool:
        """判断指定版本是否已安装。"""
        pass

    @abstractmethod
    def latest(self) -> Optional[str]:
        """返回已安装的最新版本。"""
        pass


class IDownloadManager(ABC):
    """下载、校验并解压 Ruby 归档的抽象接口。"""

    @abstractmethod
    def fetch_and_extract(
        self,
        version: str,
        destination_dir: Path,
        progress_callback: Optional[ProgressCallback] = None,
        final_dir: Optional[Path] = None,
    ) -> None:
        """
        下载并解压指定版本到 destination_dir。

        final_dir 是 destination_dir 之后会被改名到的位置，解压出的脚本据此写入解释器路径。

        成功时 destination_dir 包含完整的解释器目录树；失败时抛出 FetchError，
        并且 destination_dir 下不留任何内容。
        """
        pass


class IVersionManager(ABC):
    """版本管理器抽象接口。"""

    @abstractmethod
    def install_version(
        self,
        version: str,
        force: bool = False,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Path:
        """安装指定版本，返回安装目录。"""
        pass

    @abstractmethod
    def remove_version(self, version: str, confirm: bool = False) -> None:
        """删除指定版本。"""
        pass

    @abstractmethod
    def get_default_version(self) -> Optional[str]:
        """获取全局默认版本。"""
        pass

    @abstractmethod
    def set_default_version(self, version: str) -> None:
        """设置全局默认版本。"""
        pass
