"""
日志模块。

提供应用程序日志的配置和管理功能。

控制台输出固定写到 stderr，stdout 只留给命令本身的输出（例如
shell-init 生成的脚本）。
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

_logger: Optional[logging.Logger] = None

LOGGER_NAME = "railsup"
LOG_FILE_NAME = "railsup.log"
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(module)s - %(message)s"
CONSOLE_FORMAT = "railsup: %(levelname)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_BYTES = 5 * 1024 * 1024
BACKUP_COUNT = 5


def get_default_log_dir() -> Path:
    """
    获取默认日志目录。

    返回:
        <railsup 根目录>/logs 的 Path 对象
    """
    base = os.environ.get("RAILSUP_HOME")
    if base:
        return Path(base).expanduser() / "logs"
    return Path.home() / ".railsup" / "logs"


def setup_logger(
    level: int = logging.INFO,
    console_level: int = logging.WARNING,
    log_to_file: bool = True,
    log_to_console: bool = True,
    log_dir: Optional[Path] = None,
    max_bytes: int = MAX_BYTES,
    backup_count: int = BACKUP_COUNT,
) -> logging.Logger:
    """
    配置并初始化日志记录器。

    重复调用会替换已有的处理器，CLI 解析完 --verbose 后可再次调用。

    参数:
        level: 文件日志级别，默认为 INFO
        console_level: 控制台（stderr）日志级别，默认为 WARNING
        log_to_file: 是否输出到文件，默认为 True
        log_to_console: 是否输出到控制台，默认为 True
        log_dir: 日志文件目录，默认为 <railsup 根目录>/logs
        max_bytes: 单个日志文件最大字节数，默认为 5MB
        backup_count: 保留的备份文件数量，默认为 5

    返回:
        配置好的 Logger 实例
    """
    global _logger

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(min(level, console_level))
    logger.propagate = False
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    if log_to_file:
        target_dir = log_dir or get_default_log_dir()
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                target_dir / LOG_FILE_NAME,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
        except OSError as e:
            # 日志目录不可写时只保留控制台输出
            sys.stderr.write(f"railsup: 无法写入日志目录 {target_dir}: {e}\n")
        else:
            file_handler.setLevel(level)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
            logger.addHandler(file_handler)

    if log_to_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(console_level)
        console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        logger.addHandler(console_handler)

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    _logger = logger
    return logger


def get_logger() -> logging.Logger:
    """
    获取日志记录器实例。

    尚未初始化时返回未挂处理器的命名 logger，不会在导入阶段创建日志文件；
    真正的处理器由入口调用 setup_logger 安装。

    返回:
        Logger 实例
    """
    if _logger is None:
        return logging.getLogger(LOGGER_NAME)
    return _logger
