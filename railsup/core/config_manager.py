"""
配置管理器模块。

提供全局配置 config.toml 的加载、保存和验证功能。

文件格式::

    [ruby]
    default = "4.0.1"

未识别的键和表在保存时原样保留。
"""

import os
import tomllib
from pathlib import Path
from typing import Any, Optional

import tomli_w

from railsup.core.interfaces import IConfigManager, RailsupError
from railsup.core.paths import RailsupPaths
from railsup.utils.logger import get_logger

logger = get_logger()


class ConfigValidationError(RailsupError):
    """配置验证错误异常。"""
    pass


class ConfigLoadError(RailsupError):
    """配置加载错误异常。"""
    pass


class ConfigSaveError(RailsupError):
    """配置保存错误异常。"""
    pass


def _atomic_save_toml(file_path: Path, data: dict[str, Any]) -> None:
    """
    原子保存 TOML 数据到文件，防止写入中断导致文件损坏。

    先写入同目录下的临时文件，再用 os.replace 覆盖目标文件。

    参数:
        file_path: 目标文件路径
        data: 要保存的数据
    """
    temp_path = file_path.with_suffix(file_path.suffix + ".tmp")

    try:
        with open(temp_path, "wb") as f:
            tomli_w.dump(data, f)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, file_path)
    except Exception:
        if temp_path.exists():
            try:
                temp_path.unlink()
            except OSError as cleanup_error:
                logger.debug(f"清理临时文件 {temp_path} 失败: {cleanup_error}")
        raise


class ConfigManager(IConfigManager):
    """
    配置管理器类。

    负责 config.toml 的读写。每次调用都重新读取文件，不在进程内缓存，
    外部对文件的修改总能被看到。
    实现 IConfigManager 抽象接口。
    """

    SECTION_FIELDS = {
        "ruby": dict,
    }

    RUBY_FIELDS = {
        "default": str,
    }

    def __init__(self, paths: Optional[RailsupPaths] = None):
        """
        初始化配置管理器。

        参数:
            paths: 目录布局，默认使用 $RAILSUP_HOME 或 ~/.railsup
        """
        self.paths = paths or RailsupPaths()

    @property
    def config_file(self) -> Path:
        return self.paths.config_file

    def load_config(self) -> dict[str, Any]:
        """
        加载配置文件。

        文件不存在时返回空配置，不视为错误。

        返回:
            配置字典

        抛出:
            ConfigLoadError: 文件无法读取或不是合法的 TOML 时抛出
            ConfigValidationError: 字段类型不正确时抛出
        """
        if not self.config_file.exists():
            logger.debug(f"配置文件不存在，使用空配置: {self.config_file}")
            return {}

        try:
            with open(self.config_file, "rb") as f:
                config = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            logger.error(f"解析配置文件失败: {e}")
            raise ConfigLoadError(f"无法解析配置文件 {self.config_file}: {e}") from e
        except OSError as e:
            logger.error(f"读取配置文件失败: {e}")
            raise ConfigLoadError(f"无法读取配置文件 {self.config_file}: {e}") from e

        self.validate_config(config)
        logger.debug(f"已加载配置: {self.config_file}")
        return config

    def save_config(self, config: dict[str, Any]) -> None:
        """
        保存配置到文件。

        参数:
            config: 要保存的配置字典

        抛出:
            ConfigValidationError: 配置不合法时抛出
            ConfigSaveError: 写入失败时抛出
        """
        self.validate_config(config)
        try:
            self.config_file.parent.mkdir(parents=True, exist_ok=True)
            _atomic_save_toml(self.config_file, config)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"保存配置失败: {e}")
            raise ConfigSaveError(f"无法保存配置到 {self.config_file}: {e}") from e
        logger.debug(f"配置已保存到 {self.config_file}")

    def validate_config(self, config: dict[str, Any]) -> bool:
        """
        验证配置的有效性。

        参数:
            config: 要验证的配置字典

        返回:
            验证通过返回 True

        抛出:
            ConfigValidationError: 配置验证失败时抛出
        """
        if not isinstance(config, dict):
            raise ConfigValidationError("配置必须是表")

        for field, expected_type in self.SECTION_FIELDS.items():
            if field in config and not isinstance(config[field], expected_type):
                raise ConfigValidationError(
                    f"字段 '{field}' 必须是 {expected_type.__name__} 类型，"
                    f"实际为 {type(config[field]).__name__}"
                )

        ruby = config.get("ruby", {})
        for field, expected_type in self.RUBY_FIELDS.items():
            if field in ruby and not isinstance(ruby[field], expected_type):
                raise ConfigValidationError(
                    f"字段 'ruby.{field}' 必须是 {expected_type.__name__} 类型，"
                    f"实际为 {type(ruby[field]).__name__}"
                )

        return True

    def get_default_ruby(self) -> Optional[str]:
        """
        获取全局默认 Ruby 版本。

        返回:
            默认版本号，未设置返回 None
        """
        default = self.load_config().get("ruby", {}).get("default")
        return default or None

    def set_default_ruby(self, version: Optional[str]) -> None:
        """
        写入全局默认 Ruby 版本，其余配置保持不变。

        参数:
            version: 版本号，为 None 时清除默认版本
        """
        config = self.load_config()
        ruby = config.setdefault("ruby", {})
        if version is None:
            ruby.pop("default", None)
            if not ruby:
                config.pop("ruby")
        else:
            ruby["default"] = version
        self.save_config(config)
