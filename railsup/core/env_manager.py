"""
环境变量管理器模块。

根据解析出的 Ruby 版本构造运行 Ruby 工具所需的环境变量：

- PATH 前缀: <ruby_bin_dir>:<gem_bin_dir>，解释器目录在前，同名 gem 可执行文件不会遮住解释器
- GEM_HOME: <gem_home>
- GEM_PATH: <gem_home>，不追加系统 gem 路径
"""

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple

from railsup.core.paths import RailsupPaths
from railsup.utils.logger import get_logger

logger = get_logger()

PATH_SEPARATOR = ":"

# 这些变量会把其他 Ruby 的库注入到子进程中
CLEARED_VARIABLES = ("RUBYOPT", "RUBYLIB")


@dataclass(frozen=True)
class ResolvedEnvironment:
    """
    某个 Ruby 版本的运行环境。

    属性:
        version: Ruby 版本号
        path_entries: 需要加到 PATH 最前面的目录，按顺序
        variables: 需要设置的 (变量名, 值)，按顺序
        unset: 需要从子进程环境中移除的变量
    """

    version: str
    path_entries: Tuple[str, ...]
    variables: Tuple[Tuple[str, str], ...]
    unset: Tuple[str, ...] = field(default=CLEARED_VARIABLES)

    @property
    def path_prefix(self) -> str:
        return PATH_SEPARATOR.join(self.path_entries)

    def prepend_path(self, current_path: Optional[str]) -> str:
        """
        把 PATH 前缀加到已有的 PATH 前面。

        参数:
            current_path: 当前 PATH，可为空

        返回:
            新的 PATH
        """
        if not current_path:
            return self.path_prefix
        return f"{self.path_prefix}{PATH_SEPARATOR}{current_path}"

    def apply(self, base_environ: Mapping[str, str]) -> Dict[str, str]:
        """
        在 base_environ 的副本上应用本环境。

        参数:
            base_environ: 基础环境，通常是 os.environ

        返回:
            新的环境字典，base_environ 本身不被修改
        """
        environ = dict(base_environ)
        environ["PATH"] = self.prepend_path(base_environ.get("PATH"))
        for name, value in self.variables:
            environ[name] = value
        for name in self.unset:
            environ.pop(name, None)
        return environ


class EnvManager:
    """
    环境变量管理器类。

    纯计算，不读写磁盘，也不修改当前进程的环境。
    """

    def __init__(self, paths: Optional[RailsupPaths] = None):
        """
        初始化环境变量管理器。

        参数:
            paths: 目录布局
        """
        self.paths = paths or RailsupPaths()

    def build_env(self, version: str) -> ResolvedEnvironment:
        """
        构造指定版本的运行环境。

        参数:
            version: 已解析的 Ruby 版本号

        返回:
            ResolvedEnvironment
        """
        ruby_bin = str(self.paths.ruby_bin_dir(version))
        gem_home = str(self.paths.gem_home(version))
        gem_bin = str(self.paths.gem_bin_dir(version))

        env = ResolvedEnvironment(
            version=version,
            path_entries=(ruby_bin, gem_bin),
            variables=(
                ("GEM_HOME", gem_home),
                ("GEM_PATH", gem_home),
            ),
        )
        logger.debug(f"Ruby {version} 的 PATH 前缀: {env.path_prefix}")
        return env
