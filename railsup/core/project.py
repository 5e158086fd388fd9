"""
项目版本声明查找模块。

从起始目录向上查找最近的版本声明。同一目录中依次检查：

1. railsup.toml 顶层的 ruby = "<version>"
2. .ruby-version 的第一行非空内容

railsup.toml 没有 ruby 键时视为该目录没有声明，继续向上查找。
"""

import tomllib
from pathlib import Path
from typing import Optional

from railsup.core.interfaces import RailsupError
from railsup.utils.logger import get_logger

logger = get_logger()

PROJECT_CONFIG_FILE = "railsup.toml"
RUBY_VERSION_FILE = ".ruby-version"


class ProjectConfigError(RailsupError):
    """项目配置文件无法解析。"""
    pass


def _read_project_config(config_path: Path) -> Optional[str]:
    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ProjectConfigError(f"无法解析项目配置 {config_path}: {e}") from e
    except OSError as e:
        raise ProjectConfigError(f"无法读取项目配置 {config_path}: {e}") from e

    ruby = data.get("ruby")
    if ruby is None:
        return None
    if not isinstance(ruby, str):
        raise ProjectConfigError(f"{config_path} 中的 ruby 必须是字符串")
    return ruby.strip() or None


def _read_ruby_version_file(version_path: Path) -> Optional[str]:
    try:
        content = version_path.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning(f"读取 {version_path} 失败: {e}")
        return None

    for line in content.splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            return line
    return None


def find_project_version(starting_dir: Path) -> Optional[str]:
    """
    向上查找最近的项目版本声明。

    返回的是原始声明内容，未做规范化，也不保证已安装；由解析器负责校验。

    参数:
        starting_dir: 起始目录

    返回:
        声明的版本号，找不到时返回 None

    抛出:
        ProjectConfigError: railsup.toml 无法解析时抛出
    """
    current = Path(starting_dir).resolve()

    for directory in (current, *current.parents):
        config_path = directory / PROJECT_CONFIG_FILE
        if config_path.is_file():
            version = _read_project_config(config_path)
            if version:
                logger.debug(f"在 {config_path} 找到项目版本声明: {version}")
                return version

        version_path = directory / RUBY_VERSION_FILE
        if version_path.is_file():
            version = _read_ruby_version_file(version_path)
            if version:
                logger.debug(f"在 {version_path} 找到项目版本声明: {version}")
                return version

    return None
