"""
版本工具模块。

提供版本号规范化、解析和排序等工具函数。
"""

import re
from functools import cmp_to_key
from typing import Iterable, List, Optional

import semver

from railsup.utils.input_validator import InputValidator, InputValidationError

# Ruby 的预发布版本写成 3.4.0.preview1，比较时按 3.4.0-preview1 处理
_RUBY_PRERELEASE = re.compile(r'^(\d+\.\d+\.\d+)\.([A-Za-z][0-9A-Za-z.]*)$')


def normalize_version(version: str) -> str:
    """
    规范化用户输入的版本号。

    参数:
        version: 原始版本号，例如 " v4.0.1" 或 "ruby-4.0.1"

    返回:
        规范化后的版本号，例如 "4.0.1"

    抛出:
        InputValidationError: 版本号格式无效时抛出
    """
    cleaned = InputValidator.sanitize_version_string(version)
    InputValidator.validate_version_string(cleaned)
    parse_version(cleaned)
    return cleaned


def parse_version(version: str) -> semver.Version:
    """
    解析版本字符串为可比较的 semver.Version。

    参数:
        version: 版本字符串

    返回:
        semver.Version 实例

    抛出:
        InputValidationError: 无法解析时抛出
    """
    try:
        return semver.Version.parse(version, optional_minor_and_patch=True)
    except (ValueError, TypeError):
        pass

    match = _RUBY_PRERELEASE.match(version or "")
    if match:
        return semver.Version.parse(f"{match.group(1)}-{match.group(2)}")

    raise InputValidationError(f"无法解析的版本号: {version!r}")


def is_version_id(name: str) -> bool:
    """判断目录名是否是合法的版本号。"""
    try:
        InputValidator.validate_version_string(name)
        parse_version(name)
    except InputValidationError:
        return False
    return True


def compare_versions(a: str, b: str) -> int:
    """
    比较两个版本号。

    返回:
        a < b 返回负数，相等返回 0，a > b 返回正数
    """
    result = parse_version(a).compare(parse_version(b))
    if result == 0:
        # 4.0 与 4.0.0 语义相等时按字符串区分，保证排序稳定
        return (a > b) - (a < b)
    return result


def sort_versions_desc(versions: Iterable[str]) -> List[str]:
    """
    按版本号降序排列版本列表。

    参数:
        versions: 版本号列表

    返回:
        排序后的新列表
    """
    return sorted(versions, key=cmp_to_key(compare_versions), reverse=True)


def latest_version(versions: Iterable[str]) -> Optional[str]:
    """
    取语义版本意义下最大的版本号。

    参数:
        versions: 版本号列表

    返回:
        最新版本号，列表为空时返回 None
    """
    ordered = sort_versions_desc(versions)
    return ordered[0] if ordered else None

