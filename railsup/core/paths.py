"""
目录布局模块。

把版本号映射到磁盘上的各个位置，不做任何 I/O：

    <base>/
    ├── ruby/<version>/       解释器目录（必须包含 bin/ruby）
    ├── gems/<version>/bin/   该版本的 gem 可执行文件
    ├── cache/                下载的归档
    ├── logs/                 日志
    └── config.toml           全局配置
"""

import os
from pathlib import Path
from typing import Optional

RAILSUP_HOME_ENV = "RAILSUP_HOME"
RUBY_EXECUTABLE = "ruby"


def default_base_dir() -> Path:
    """
    获取默认根目录：$RAILSUP_HOME，未设置时为 ~/.railsup。

    返回:
        根目录 Path
    """
    env_value = os.environ.get(RAILSUP_HOME_ENV)
    if env_value:
        return Path(env_value).expanduser()
    return Path.home() / ".railsup"


class RailsupPaths:
    """
    railsup 目录布局。

    所有组件都从这里取路径，测试时传入临时目录即可，不依赖真实的家目录。
    """

    def __init__(self, base: Optional[Path] = None):
        self.base = Path(base) if base is not None else default_base_dir()

    def __repr__(self) -> str:
        return f"RailsupPaths({str(self.base)!r})"

    @property
    def ruby_dir(self) -> Path:
        return self.base / "ruby"

    @property
    def gems_dir(self) -> Path:
        return self.base / "gems"

    @property
    def cache_dir(self) -> Path:
        return self.base / "cache"

    @property
    def logs_dir(self) -> Path:
        return self.base / "logs"

    @property
    def config_file(self) -> Path:
        return self.base / "config.toml"

    def ruby_root(self, version: str) -> Path:
        return self.ruby_dir / version

    def ruby_bin_dir(self, version: str) -> Path:
        return self.ruby_root(version) / "bin"

    def ruby_executable(self, version: str) -> Path:
        return self.ruby_bin_dir(version) / RUBY_EXECUTABLE

    def gem_home(self, version: str) -> Path:
        return self.gems_dir / version

    def gem_bin_dir(self, version: str) -> Path:
        return self.gem_home(version) / "bin"

    def ensure_dirs(self) -> None:
        """创建 ruby、gems、cache 目录。"""
        for directory in (self.ruby_dir, self.gems_dir, self.cache_dir):
            directory.mkdir(parents=True, exist_ok=True)
