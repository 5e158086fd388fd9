"""
输入验证模块。

提供版本号、shell 名称和命令参数的验证与 sanitization 功能。
"""

import re


class InputValidationError(Exception):
    """输入验证错误异常。"""
    pass


class InputValidator:
    """
    输入验证器类。

    提供用户输入的验证和 sanitization 功能。
    """

    VERSION_PATTERN = re.compile(r'^\d[0-9A-Za-z.+-]*$')
    SHELL_NAME_PATTERN = re.compile(r'^[a-zA-Z0-9_-]+$')
    MAX_VERSION_LENGTH = 100
    MAX_COMMAND_ARG_LENGTH = 4096

    @classmethod
    def sanitize_version_string(cls, version: str) -> str:
        """
        sanitize 版本号字符串。

        去掉首尾空白、开头的 v/V 以及 ruby- 前缀。

        参数:
            version: 原始版本号

        返回:
            sanitized 后的版本号
        """
        if not version:
            return ""
        version = version.strip()
        if version.startswith("ruby-"):
            version = version[len("ruby-"):]
        if version[:1] in ("v", "V"):
            version = version[1:]
        return version

    @classmethod
    def validate_version_string(cls, version: str) -> bool:
        """
        验证版本号字符串的有效性。

        参数:
            version: 已 sanitize 的版本号字符串

        返回:
            验证通过返回 True，否则抛出 InputValidationError
        """
        if not version or not version.strip():
            raise InputValidationError("版本号不能为空")

        if len(version) > cls.MAX_VERSION_LENGTH:
            raise InputValidationError(f"版本号不能超过 {cls.MAX_VERSION_LENGTH} 个字符")

        if not cls.VERSION_PATTERN.match(version):
            raise InputValidationError(f"版本号格式无效: {version!r}")

        return True

    @classmethod
    def sanitize_shell_name(cls, shell: str) -> str:
        """
        从 $SHELL 之类的值中取出 shell 名称。

        参数:
            shell: 原始值，例如 /opt/homebrew/bin/zsh

        返回:
            小写的 shell 名称，无法识别时返回空字符串
        """
        if not shell:
            return ""
        name = shell.strip().rsplit("/", 1)[-1].lower()
        if name.startswith("-"):
            # 登录 shell 的 argv[0] 形如 -zsh
            name = name[1:]
        if not cls.SHELL_NAME_PATTERN.match(name):
            return ""
        return name

    @classmethod
    def validate_command_arg(cls, arg: str, max_length: int = MAX_COMMAND_ARG_LENGTH) -> bool:
        """
        验证要执行的命令名。

        参数:
            arg: 命令名
            max_length: 最大长度

        返回:
            验证通过返回 True，否则抛出 InputValidationError
        """
        if not arg or not arg.strip():
            raise InputValidationError("命令不能为空")

        if len(arg) > max_length:
            raise InputValidationError(f"命令不能超过 {max_length} 个字符")

        if "\x00" in arg:
            raise InputValidationError("命令包含非法字符")

        return True
