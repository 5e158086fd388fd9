"""
诊断模块。

收集 railsup 安装状态的只读诊断报告，供 railsup doctor 使用：

- 已安装的版本、默认版本及其是否有效
- 当前目录下会解析出的版本
- shell 配置文件中 shell-init 的位置（是否在其他版本管理器之后）
- rbenv、asdf、rvm、mise 等版本管理器是否在 PATH 中排在 railsup 前面
- PATH 中各目录的来源，以及 `ruby` 实际指向哪里
- 会干扰 Ruby 的环境变量

诊断过程不修改任何文件。
"""

import os
import re
import shutil
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from railsup import __version__
from railsup.core.config_manager import ConfigManager
from railsup.core.env_manager import PATH_SEPARATOR
from railsup.core.interfaces import ILocalManager, RailsupError
from railsup.core.paths import RailsupPaths
from railsup.core.project import find_project_version
from railsup.core.remote_fetcher import DEFAULT_RUBY_VERSION
from railsup.core.resolver import Resolver
from railsup.utils.logger import get_logger

logger = get_logger()

SHELL_CONFIG_FILES = (".zshrc", ".bashrc", ".bash_profile", ".config/fish/config.fish")

# 这些片段出现在 shell 配置中说明加载了其他版本管理器
VERSION_MANAGER_MARKERS = (
    "rbenv init",
    "asdf.sh",
    "asdf.fish",
    "rvm.sh",
    "rvm/scripts/rvm",
    "mise activate",
    "chruby.sh",
)

SHELL_INIT_MARKER = "railsup shell-init"

_SOURCE_COMMAND = re.compile(r'(?:^|&&\s*|;\s*)(?:source|\.)\s+["\']?([^"\'\s;]+)')


class Placement(str, Enum):
    """shell-init 相对其他版本管理器初始化语句的位置。"""

    NOT_FOUND = "not_found"
    BEFORE_VERSION_MANAGERS = "before_version_managers"
    AFTER_VERSION_MANAGERS = "after_version_managers"
    NO_VERSION_MANAGERS = "no_version_managers"


class Impact(str, Enum):
    """其他版本管理器对 railsup 的影响。"""

    NONE = "none"
    OVERRIDDEN = "overridden"
    BLOCKING = "blocking"


class PathSource(str, Enum):
    """PATH 中某个目录的来源。"""

    RAILSUP = "railsup"
    RAILSUP_GEMS = "railsup_gems"
    RBENV = "rbenv"
    ASDF = "asdf"
    RVM = "rvm"
    MISE = "mise"
    HOMEBREW = "homebrew"
    SYSTEM = "system"
    UNKNOWN = "unknown"


@dataclass
class InstalledRuby:
    version: str
    path: Path
    is_default: bool


@dataclass
class RubyStatus:
    """已安装版本和默认版本的汇总。"""

    installed: List[InstalledRuby] = field(default_factory=list)
    default_version: Optional[str] = None
    default_installed: bool = False
    config_error: Optional[str] = None

    @property
    def any_installed(self) -> bool:
        return bool(self.installed)


@dataclass
class ResolutionStatus:
    """在当前目录运行 railsup exec 时会使用的版本。"""

    version: Optional[str] = None
    tier: Optional[str] = None
    project_version: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ShellIntegration:
    configured: bool = False
    shell_file: Optional[Path] = None
    line_number: Optional[int] = None
    placement: Placement = Placement.NOT_FOUND


@dataclass
class Conflict:
    """
    某个其他版本管理器的检测结果。

    属性:
        tool: 工具名
        location: 工具的安装目录，不存在为 None
        path_position: 其 shim 目录在 PATH 中的位置（从 0 开始），不在 PATH 中为 None
        impact: 对 railsup 的影响
    """

    tool: str
    location: Optional[Path]
    path_position: Optional[int]
    impact: Impact

    @property
    def detected(self) -> bool:
        return self.location is not None or self.path_position is not None


@dataclass
class PathEntry:
    position: int
    path: str
    source: PathSource


@dataclass
class PathAnalysis:
    entries: List[PathEntry] = field(default_factory=list)
    which_ruby: Optional[Path] = None
    expected_ruby: Optional[Path] = None
    ruby_correct: bool = False
    railsup_position: Optional[int] = None


@dataclass
class DiagnosticReport:
    railsup_version: str
    base_dir: Path
    ruby: RubyStatus
    resolution: ResolutionStatus
    shell_integration: ShellIntegration
    conflicts: List[Conflict]
    path_analysis: PathAnalysis
    environment_issues: List[str]

    def to_dict(self) -> Dict[str, Any]:
        """转换为可以直接 json.dumps 的字典，路径转为字符串。"""
        data = asdict(self)
        data["ruby"]["any_installed"] = self.ruby.any_installed
        for conflict, raw in zip(self.conflicts, data["conflicts"]):
            raw["detected"] = conflict.detected
        return _stringify_paths(data)


def _stringify_paths(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _stringify_paths(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_stringify_paths(item) for item in value]
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return value


def _is_under(path: Path, parent: Path) -> bool:
    try:
        path.relative_to(parent)
    except ValueError:
        return False
    return True


def classify_path_entry(entry: str, paths: RailsupPaths) -> PathSource:
    """
    判断 PATH 中的一个目录来自哪里。

    参数:
        entry: PATH 中的目录
        paths: railsup 目录布局

    返回:
        目录来源
    """
    entry_path = Path(entry)
    if _is_under(entry_path, paths.ruby_dir):
        return PathSource.RAILSUP
    if _is_under(entry_path, paths.gems_dir):
        return PathSource.RAILSUP_GEMS
    if ".rbenv" in entry:
        return PathSource.RBENV
    if ".asdf" in entry:
        return PathSource.ASDF
    if ".rvm" in entry:
        return PathSource.RVM
    if "mise" in entry:
        return PathSource.MISE
    if "/opt/homebrew" in entry or "/usr/local/Cellar" in entry:
        return PathSource.HOMEBREW
    if entry.startswith("/usr/") or entry.startswith("/bin") or entry.startswith("/sbin"):
        return PathSource.SYSTEM
    return PathSource.UNKNOWN


def check_file_for_shell_init(path: Path) -> Optional[ShellIntegration]:
    """
    在单个 shell 配置文件中查找 shell-init。

    参数:
        path: shell 配置文件

    返回:
        找到 shell-init 时返回其位置，否则返回 None
    """
    try:
        content = path.read_text(errors="replace")
    except OSError:
        return None

    railsup_line = None
    last_manager_line = None
    for number, line in enumerate(content.splitlines(), start=1):
        stripped = line.strip()
        if stripped.startswith("#"):
            continue
        if SHELL_INIT_MARKER in stripped:
            railsup_line = number
        if any(marker in stripped for marker in VERSION_MANAGER_MARKERS):
            last_manager_line = number

    if railsup_line is None:
        return None
    if last_manager_line is None:
        placement = Placement.NO_VERSION_MANAGERS
    elif railsup_line > last_manager_line:
        placement = Placement.AFTER_VERSION_MANAGERS
    else:
        placement = Placement.BEFORE_VERSION_MANAGERS
    return ShellIntegration(True, path, railsup_line, placement)


def _expand_sourced_path(raw: str, home: Path) -> Optional[Path]:
    for prefix in ("~/", "$HOME/", "${HOME}/"):
        if raw.startswith(prefix):
            return home / raw[len(prefix):]
    if raw.startswith("/"):
        return Path(raw)
    return None


def sourced_files(config_path: Path, home: Path) -> List[Path]:
    """
    列出 shell 配置文件中 source 的其他文件（只处理绝对路径和 ~、$HOME 开头的路径）。

    参数:
        config_path: shell 配置文件
        home: 用户主目录
    """
    try:
        content = config_path.read_text(errors="replace")
    except OSError:
        return []

    found = []
    for line in content.splitlines():
        stripped = line.strip()
        if stripped.startswith("#"):
            continue
        for match in _SOURCE_COMMAND.finditer(stripped):
            sourced = _expand_sourced_path(match.group(1), home)
            if sourced is not None and sourced.is_file():
                found.append(sourced)
    return found


def detect_shell_integration(home: Path) -> ShellIntegration:
    """
    依次检查常见的 shell 配置文件及其 source 的文件，返回第一个包含 shell-init 的结果。

    参数:
        home: 用户主目录
    """
    for name in SHELL_CONFIG_FILES:
        config_path = home / name
        if not config_path.is_file():
            continue
        status = check_file_for_shell_init(config_path)
        if status is not None:
            return status
        for sourced in sourced_files(config_path, home):
            status = check_file_for_shell_init(sourced)
            if status is not None:
                return status
    return ShellIntegration()


def _first_position(entries: List[str], predicate: Callable[[str], bool]) -> Optional[int]:
    for position, entry in enumerate(entries):
        if predicate(entry):
            return position
    return None


def detect_conflicts(
    home: Path,
    path_entries: List[str],
    railsup_position: Optional[int],
) -> List[Conflict]:
    """
    检查其他 Ruby 版本管理器。

    在 PATH 中排在 railsup 的 Ruby 目录之前的 shim 目录会遮住 railsup，
    记为 BLOCKING；排在之后的记为 OVERRIDDEN；已安装但不在 PATH 中的记为 NONE。

    参数:
        home: 用户主目录
        path_entries: PATH 按顺序拆分后的目录
        railsup_position: railsup 的 Ruby 目录在 PATH 中的位置
    """
    candidates = (
        ("rbenv", home / ".rbenv", lambda entry: ".rbenv/shims" in entry or ".rbenv/bin" in entry),
        ("asdf", home / ".asdf", lambda entry: ".asdf/shims" in entry),
        ("rvm", home / ".rvm", lambda entry: ".rvm/" in entry or entry.endswith(".rvm")),
        ("mise", home / ".local" / "share" / "mise", lambda entry: "mise/shims" in entry),
    )

    conflicts = []
    for tool, location, in_path in candidates:
        position = _first_position(path_entries, in_path)
        if position is None:
            impact = Impact.NONE
        elif railsup_position is not None and railsup_position < position:
            impact = Impact.OVERRIDDEN
        else:
            impact = Impact.BLOCKING
        conflicts.append(Conflict(
            tool=tool,
            location=location if location.exists() else None,
            path_position=position,
            impact=impact,
        ))
    return conflicts


def check_environment(environ: Mapping[str, str], paths: RailsupPaths) -> List[str]:
    """
    检查会干扰 Ruby 的环境变量。

    返回:
        问题描述列表
    """
    issues = []
    gem_home = environ.get("GEM_HOME")
    if gem_home and not _is_under(Path(gem_home), paths.gems_dir):
        issues.append(f"GEM_HOME={gem_home}（不是 railsup 的 gem 目录）")
    for name in ("RUBYOPT", "RUBYLIB"):
        value = environ.get(name)
        if value:
            issues.append(f"{name}={value}（可能引起冲突）")
    return issues


def _ruby_status(local_manager: ILocalManager, config_manager: ConfigManager) -> RubyStatus:
    status = RubyStatus()
    try:
        default = config_manager.get_default_ruby()
    except RailsupError as e:
        logger.warning(f"读取默认版本失败: {e}")
        status.config_error = str(e)
        default = None

    status.default_version = default
    for version in local_manager.list_installed():
        status.installed.append(InstalledRuby(
            version=version,
            path=config_manager.paths.ruby_root(version),
            is_default=version == default,
        ))
    status.default_installed = default is not None and local_manager.is_installed(default)
    return status


def _resolution_status(resolver: Resolver, cwd: Path) -> ResolutionStatus:
    status = ResolutionStatus()
    try:
        status.project_version = find_project_version(cwd)
        resolution = resolver.resolve(cwd=cwd)
    except RailsupError as e:
        status.error = str(e)
        return status
    status.version = resolution.version
    status.tier = resolution.tier.value
    return status


def analyze_path(
    path_entries: List[str],
    paths: RailsupPaths,
    expected_version: Optional[str],
) -> PathAnalysis:
    """
    给 PATH 中的每个目录标注来源，并检查 `ruby` 是否指向 railsup 安装的解释器。

    参数:
        path_entries: PATH 按顺序拆分后的目录
        paths: railsup 目录布局
        expected_version: 期望生效的版本，未知时为 None
    """
    analysis = PathAnalysis()
    for position, entry in enumerate(path_entries):
        source = classify_path_entry(entry, paths)
        analysis.entries.append(PathEntry(position, entry, source))
        if source == PathSource.RAILSUP and analysis.railsup_position is None:
            analysis.railsup_position = position

    which_ruby = shutil.which("ruby", path=PATH_SEPARATOR.join(path_entries))
    analysis.which_ruby = Path(which_ruby) if which_ruby else None
    if expected_version is not None:
        analysis.expected_ruby = paths.ruby_executable(expected_version)
    if analysis.which_ruby is not None:
        analysis.ruby_correct = _is_under(analysis.which_ruby, paths.ruby_dir)
    return analysis


def collect_diagnostics(
    local_manager: ILocalManager,
    config_manager: ConfigManager,
    resolver: Resolver,
    environ: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
    cwd: Optional[Path] = None,
) -> DiagnosticReport:
    """
    收集完整的诊断报告。

    参数:
        local_manager: 已安装版本注册表
        config_manager: 配置管理器
        resolver: 版本解析器
        environ: 环境变量，默认 os.environ
        home: 用户主目录，默认 Path.home()
        cwd: 当前目录，默认进程当前目录

    返回:
        DiagnosticReport
    """
    environ = os.environ if environ is None else environ
    home = Path.home() if home is None else home
    cwd = Path.cwd() if cwd is None else cwd
    paths = config_manager.paths

    ruby = _ruby_status(local_manager, config_manager)
    resolution = _resolution_status(resolver, cwd)
    path_entries = [entry for entry in environ.get("PATH", "").split(PATH_SEPARATOR) if entry]
    path_analysis = analyze_path(path_entries, paths, resolution.version)

    report = DiagnosticReport(
        railsup_version=__version__,
        base_dir=paths.base,
        ruby=ruby,
        resolution=resolution,
        shell_integration=detect_shell_integration(home),
        conflicts=detect_conflicts(home, path_entries, path_analysis.railsup_position),
        path_analysis=path_analysis,
        environment_issues=check_environment(environ, paths),
    )
    logger.debug(f"诊断完成: 已安装 {len(ruby.installed)} 个版本，PATH {len(path_entries)} 项")
    return report


_SOURCE_LABELS = {
    PathSource.RAILSUP: " <- railsup",
    PathSource.RAILSUP_GEMS: " <- gem 可执行文件",
    PathSource.RBENV: " <- rbenv",
    PathSource.ASDF: " <- asdf",
    PathSource.RVM: " <- rvm",
    PathSource.MISE: " <- mise",
    PathSource.HOMEBREW: " <- homebrew",
}

OK = "[✓]"
WARN = "[!]"
FAIL = "[✗]"

MAX_PATH_ENTRIES_SHOWN = 6


def format_report(report: DiagnosticReport, verbose: bool = False) -> str:
    """
    把诊断报告渲染为给人看的文本。

    参数:
        report: 诊断报告
        verbose: 是否显示所有小节，默认只显示有问题的小节

    返回:
        多行文本
    """
    lines = [f"railsup {report.railsup_version}", f"  目录: {report.base_dir}", ""]

    lines.append("Ruby")
    ruby = report.ruby
    if ruby.config_error:
        lines.append(f"  {FAIL} 配置文件无法读取: {ruby.config_error}")
    if not ruby.any_installed:
        lines.append(f"  {FAIL} 尚未安装任何 Ruby 版本")
        lines.append(f"      运行: railsup ruby install {DEFAULT_RUBY_VERSION}")
    else:
        versions = ", ".join(item.version for item in ruby.installed)
        lines.append(f"  {OK} 已安装: {versions}")
        if ruby.default_version is None:
            lines.append(f"  {WARN} 未设置默认版本")
            lines.append(f"      运行: railsup ruby default {ruby.installed[0].version}")
        elif not ruby.default_installed:
            lines.append(f"  {FAIL} 默认版本 {ruby.default_version} 未安装")
            lines.append(f"      运行: railsup ruby install {ruby.default_version}")
        else:
            lines.append(f"  {OK} 默认版本: {ruby.default_version}")

    resolution = report.resolution
    if resolution.error:
        lines.append(f"  {FAIL} 当前目录无法解析 Ruby 版本")
        lines.extend(f"      {line}" for line in resolution.error.splitlines())
    elif resolution.version:
        lines.append(f"  {OK} 当前目录使用: {resolution.version}（{resolution.tier}）")
    lines.append("")

    lines.append("Shell 集成")
    shell = report.shell_integration
    if shell.placement == Placement.NOT_FOUND:
        lines.append(f"  {FAIL} 未配置 shell-init")
        lines.append('      在 shell 配置文件末尾加入: eval "$(railsup shell-init)"')
    else:
        lines.append(f"  {OK} shell-init 位于 {shell.shell_file} 第 {shell.line_number} 行")
        if shell.placement == Placement.BEFORE_VERSION_MANAGERS:
            lines.append(f"  {WARN} shell-init 在其他版本管理器之前，会被它们覆盖")
            lines.append("      请移到文件末尾")
        elif shell.placement == Placement.AFTER_VERSION_MANAGERS:
            lines.append(f"  {OK} 位于其他版本管理器之后")
    lines.append("")

    active = [conflict for conflict in report.conflicts if conflict.detected]
    if active or verbose:
        lines.append("冲突")
        if not active:
            lines.append(f"  {OK} 未检测到其他版本管理器")
        for conflict in active:
            if conflict.impact == Impact.BLOCKING:
                lines.append(f"  {FAIL} {conflict.tool} 在 PATH 第 {conflict.path_position + 1} 项，排在 railsup 之前")
                lines.append("      使用 railsup exec，或把 shell-init 放到配置文件末尾")
            elif conflict.impact == Impact.OVERRIDDEN:
                lines.append(f"  {WARN} 检测到 {conflict.tool}，railsup 在 PATH 中排在它之前（正常）")
            elif verbose:
                lines.append(f"      {conflict.tool} 已安装在 {conflict.location}（未启用）")
        lines.append("")

    analysis = report.path_analysis
    if verbose or not analysis.ruby_correct:
        lines.append("PATH")
        for entry in analysis.entries[:MAX_PATH_ENTRIES_SHOWN]:
            lines.append(f"  {entry.position + 1}. {entry.path}{_SOURCE_LABELS.get(entry.source, '')}")
        if len(analysis.entries) > MAX_PATH_ENTRIES_SHOWN:
            lines.append("  ...")
        if analysis.which_ruby is None:
            if ruby.any_installed:
                lines.append(f"  {WARN} which ruby -> 未找到，shell 集成可能没有生效")
        elif analysis.ruby_correct:
            lines.append(f"  {OK} which ruby -> {analysis.which_ruby}")
        else:
            lines.append(f"  {FAIL} which ruby -> {analysis.which_ruby}")
            if analysis.expected_ruby is not None:
                lines.append(f"      期望: {analysis.expected_ruby}")
        lines.append("")

    if report.environment_issues or verbose:
        lines.append("环境变量")
        if not report.environment_issues:
            lines.append(f"  {OK} 未发现有问题的变量")
        for issue in report.environment_issues:
            lines.append(f"  {WARN} {issue}")
        lines.append("")

    return "\n".join(lines).rstrip() + "\n"
