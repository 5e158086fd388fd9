"""
railsup 核心模块。

提供目录布局、版本注册表、版本解析、安装管理、环境构造、shell 脚本生成、命令执行和诊断功能。
"""

from .interfaces import RailsupError, IConfigManager, ILocalManager, IDownloadManager, IVersionManager
from .paths import RailsupPaths, default_base_dir
from .config_manager import ConfigManager, ConfigValidationError, ConfigLoadError, ConfigSaveError
from .local_manager import LocalManager, LocalManagerError, VersionNotFoundError, NotInstalledError
from .project import find_project_version, ProjectConfigError
from .resolver import Resolver, Resolution, Tier, resolve_version, NoRubyInstalledError, VersionNotInstalledError
from .download_manager import DownloadManager, FetchError, DownloadError, ChecksumError, ExtractionError
from .remote_fetcher import RemoteFetcher, DEFAULT_RUBY_VERSION, AVAILABLE_VERSIONS
from .version_manager import (
    VersionManager, VersionManagerError, AlreadyInstalledError,
    RemovalRequiresConfirmationError, InstallationError,
)
from .env_manager import EnvManager, ResolvedEnvironment
from .shell_emitter import ShellFamily, detect_shell_family, render
from .exec_wrapper import ExecError
from . import version_utils, exec_wrapper, shell_emitter, doctor

__all__ = [
    "RailsupError", "IConfigManager", "ILocalManager", "IDownloadManager", "IVersionManager",
    "RailsupPaths", "default_base_dir",
    "ConfigManager", "ConfigValidationError", "ConfigLoadError", "ConfigSaveError",
    "LocalManager", "LocalManagerError", "VersionNotFoundError", "NotInstalledError",
    "find_project_version", "ProjectConfigError",
    "Resolver", "Resolution", "Tier", "resolve_version", "NoRubyInstalledError", "VersionNotInstalledError",
    "DownloadManager", "FetchError", "DownloadError", "ChecksumError", "ExtractionError",
    "RemoteFetcher", "DEFAULT_RUBY_VERSION", "AVAILABLE_VERSIONS",
    "VersionManager", "VersionManagerError", "AlreadyInstalledError",
    "RemovalRequiresConfirmationError", "InstallationError",
    "EnvManager", "ResolvedEnvironment",
    "ShellFamily", "detect_shell_family", "render",
    "ExecError",
    "version_utils", "exec_wrapper", "shell_emitter", "doctor",
]
