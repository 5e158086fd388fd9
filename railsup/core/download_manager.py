"""
下载管理模块。

提供预编译 Ruby 归档的下载、校验和解压功能。
"""

import hashlib
import os
import platform
import shutil
import tarfile
from pathlib import Path
from typing import Optional, Tuple

import requests

from railsup.core.interfaces import IDownloadManager, ProgressCallback, RailsupError
from railsup.core.paths import RailsupPaths
from railsup.utils.logger import get_logger
from railsup.utils.retry import RetryHandler

logger = get_logger()

RUBY_RELEASES_URL = "https://github.com/railsup-sh/ruby/releases/download"
CHUNK_SIZE = 8192
DOWNLOAD_TIMEOUT = 300
CHECKSUM_TIMEOUT = 30

_OS_NAMES = {
    "darwin": "darwin",
    "linux": "linux",
}

_ARCH_NAMES = {
    "arm64": "arm64",
    "aarch64": "arm64",
    "x86_64": "x86_64",
    "amd64": "x86_64",
}


class FetchError(RailsupError):
    """获取 Ruby 归档失败。"""
    pass


class DownloadError(FetchError):
    """下载错误异常。"""
    pass


class ChecksumError(FetchError):
    """校验和不匹配。"""
    pass


class ExtractionError(FetchError):
    """解压错误异常。"""
    pass


def detect_os() -> str:
    """
    检测下载地址使用的操作系统名称。

    抛出:
        FetchError: 不支持的操作系统
    """
    system = platform.system().lower()
    if system not in _OS_NAMES:
        raise FetchError(f"不支持的操作系统: {platform.system()}，railsup 只支持 macOS 和 Linux")
    return _OS_NAMES[system]


def detect_arch() -> str:
    """
    检测下载地址使用的 CPU 架构名称。

    抛出:
        FetchError: 不支持的架构
    """
    machine = platform.machine().lower()
    if machine not in _ARCH_NAMES:
        raise FetchError(f"不支持的 CPU 架构: {platform.machine()}，railsup 只支持 arm64 和 x86_64")
    return _ARCH_NAMES[machine]


def archive_name(version: str, os_name: str, arch: str) -> str:
    return f"ruby-{version}-{os_name}-{arch}.tar.gz"


def ruby_download_url(version: str, os_name: str, arch: str) -> str:
    return f"{RUBY_RELEASES_URL}/v{version}/{archive_name(version, os_name, arch)}"


def checksum_url(version: str, os_name: str, arch: str) -> str:
    return ruby_download_url(version, os_name, arch) + ".sha256"


def _sha256_file(file_path: Path) -> str:
    hasher = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE * 8), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def _is_within(base: Path, target: Path) -> bool:
    base = base.resolve()
    try:
        target.resolve().relative_to(base)
    except ValueError:
        return False
    return True


class DownloadManager(IDownloadManager):
    """
    下载管理器类。

    负责 Ruby 归档的下载、SHA-256 校验和解压。下载的归档缓存在
    <base>/cache 中，再次安装同一版本时直接复用。
    实现 IDownloadManager 抽象接口。
    """

    def __init__(
        self,
        paths: Optional[RailsupPaths] = None,
        session: Optional[requests.Session] = None,
        retry_handler: Optional[RetryHandler] = None,
        os_name: Optional[str] = None,
        arch: Optional[str] = None,
    ):
        """
        初始化下载管理器。

        参数:
            paths: 目录布局
            session: requests 会话
            retry_handler: 重试处理器
            os_name: 目标操作系统，默认自动检测
            arch: 目标架构，默认自动检测
        """
        self.paths = paths or RailsupPaths()
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", "railsup")
        self.retry_handler = retry_handler or RetryHandler(max_retries=3)
        self._os_name = os_name
        self._arch = arch

    @property
    def os_name(self) -> str:
        if self._os_name is None:
            self._os_name = detect_os()
        return self._os_name

    @property
    def arch(self) -> str:
        if self._arch is None:
            self._arch = detect_arch()
        return self._arch

    def get_cache_path(self, version: str) -> Path:
        """
        获取归档缓存路径。

        参数:
            version: 版本号

        返回:
            <base>/cache/ruby-<version>-<os>-<arch>.tar.gz
        """
        return self.paths.cache_dir / archive_name(version, self.os_name, self.arch)

    def _download_file(
        self,
        url: str,
        dest: Path,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None:
        """
        流式下载文件，先写到 .part 文件，完成后再改名。

        参数:
            url: 下载 URL
            dest: 目标文件
            progress_callback: 下载进度回调函数 (已下载字节, 总字节)
        """
        part_path = dest.with_name(dest.name + ".part")

        def _do_download():
            response = self.session.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT)
            response.raise_for_status()
            return response

        try:
            response = self.retry_handler.execute(_do_download)
        except requests.exceptions.RequestException as e:
            raise DownloadError(f"下载失败: {url}: {e}") from e

        total_size = int(response.headers.get("content-length", 0) or 0)
        downloaded = 0

        try:
            with open(part_path, "wb") as f:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if not chunk:
                        continue
                    f.write(chunk)
                    downloaded += len(chunk)
                    if progress_callback:
                        progress_callback(downloaded, total_size)
            os.replace(part_path, dest)
        except (requests.exceptions.RequestException, OSError) as e:
            part_path.unlink(missing_ok=True)
            raise DownloadError(f"下载失败: {url}: {e}") from e
        finally:
            response.close()

        logger.info(f"已下载 {url} ({downloaded} 字节)")

    def _fetch_expected_checksum(self, version: str) -> str:
        url = checksum_url(version, self.os_name, self.arch)

        def _do_request():
            response = self.session.get(url, timeout=CHECKSUM_TIMEOUT)
            response.raise_for_status()
            return response

        try:
            response = self.retry_handler.execute(_do_request)
        except requests.exceptions.RequestException as e:
            raise DownloadError(f"下载校验和失败: {url}: {e}") from e

        parts = response.text.split()
        if not parts:
            raise ChecksumError(f"校验和文件格式无效: {url}")
        return parts[0].lower()

    def verify_checksum(self, archive_path: Path, version: str) -> None:
        """
        校验归档的 SHA-256。

        不匹配时删除缓存的归档。

        抛出:
            ChecksumError: 校验和不匹配时抛出
        """
        expected = self._fetch_expected_checksum(version)
        actual = _sha256_file(archive_path)
        if actual != expected:
            archive_path.unlink(missing_ok=True)
            raise ChecksumError(
                f"Ruby {version} 校验和不匹配，下载可能已损坏（期望 {expected}，实际 {actual}）"
            )
        logger.debug(f"Ruby {version} 校验和验证通过")

    def _extract_archive(self, archive_path: Path, target_dir: Path) -> None:
        """
        解压 tar.gz 归档，防止路径遍历漏洞。

        归档只有一个顶层目录（例如 ruby-4.0.1/）时，把它的内容直接放到 target_dir 下。

        参数:
            archive_path: 归档路径
            target_dir: 目标目录（必须为空或不存在）
        """
        try:
            with tarfile.open(archive_path, "r:gz") as tf:
                members = tf.getmembers()
                for member in members:
                    name = member.name
                    if name.startswith("/") or ".." in Path(name).parts:
                        raise ExtractionError(f"归档包含非法路径: {name}")
                    if member.issym() or member.islnk():
                        if member.issym():
                            link_target = (target_dir / name).parent / member.linkname
                        else:
                            link_target = target_dir / member.linkname
                        if member.linkname.startswith("/") or not _is_within(target_dir, link_target):
                            raise ExtractionError(f"归档包含指向外部的链接: {name} -> {member.linkname}")

                target_dir.mkdir(parents=True, exist_ok=True)
                extract_kwargs = {"filter": "tar"} if hasattr(tarfile, "tar_filter") else {}
                tf.extractall(target_dir, **extract_kwargs)
        except (tarfile.TarError, OSError) as e:
            raise ExtractionError(f"解压 {archive_path} 失败: {e}") from e

        self._hoist_single_top_level_dir(target_dir)

    @staticmethod
    def _hoist_single_top_level_dir(target_dir: Path) -> None:
        entries = list(target_dir.iterdir())
        if len(entries) != 1 or not entries[0].is_dir() or (target_dir / "bin").exists():
            return

        inner = entries[0]
        for child in list(inner.iterdir()):
            shutil.move(str(child), str(target_dir / child.name))
        inner.rmdir()

    def fetch_and_extract(
        self,
        version: str,
        destination_dir: Path,
        progress_callback: Optional[ProgressCallback] = None,
        final_dir: Optional[Path] = None,
    ) -> None:
        """
        下载、校验并解压指定版本到 destination_dir。

        参数:
            version: 版本号
            destination_dir: 解压目标目录
            progress_callback: 下载进度回调函数
            final_dir: 目录最终会被改名到的位置，用于改写 shebang；默认等于 destination_dir

        抛出:
            FetchError: 任一步骤失败时抛出，destination_dir 下不留内容
        """
        destination_dir = Path(destination_dir)
        self.paths.cache_dir.mkdir(parents=True, exist_ok=True)
        cache_path = self.get_cache_path(version)

        if cache_path.exists():
            logger.info(f"使用缓存的 {cache_path.name}")
        else:
            url = ruby_download_url(version, self.os_name, self.arch)
            logger.info(f"正在下载 {url}")
            self._download_file(url, cache_path, progress_callback)
            try:
                self.verify_checksum(cache_path, version)
            except FetchError:
                # 未通过校验的归档不能留在缓存里被下次复用
                cache_path.unlink(missing_ok=True)
                raise

        try:
            self._extract_archive(cache_path, destination_dir)
            self._fix_shebangs(destination_dir, final_dir or destination_dir)
        except Exception:
            shutil.rmtree(destination_dir, ignore_errors=True)
            raise

        logger.info(f"已解压 Ruby {version} 到 {destination_dir}")

    def _fix_shebangs(self, extracted_dir: Path, final_dir: Path) -> None:
        """
        把 bin/ 下脚本的 shebang 改为指向安装后的解释器。

        参数:
            extracted_dir: 刚解压出的目录
            final_dir: 该目录最终所在的位置
        """
        bin_dir = extracted_dir / "bin"
        if not bin_dir.is_dir():
            return
        new_shebang = f"#!{final_dir / 'bin' / 'ruby'}\n"
        for path in bin_dir.iterdir():
            if path.is_dir() or path.name == "ruby":
                continue
            try:
                content = path.read_text(encoding="utf-8")
            except (UnicodeDecodeError, OSError):
                continue
            first_line, sep, rest = content.partition("\n")
            if not sep or not first_line.startswith("#!") or "/ruby" not in first_line:
                continue
            path.write_text(new_shebang + rest, encoding="utf-8")

    def clear_cache(self) -> Tuple[int, int]:
        """
        清空归档缓存。

        返回:
            (删除的文件数, 释放的字节数)
        """
        cache_dir = self.paths.cache_dir
        if not cache_dir.is_dir():
            return 0, 0

        count = 0
        total_size = 0
        for entry in cache_dir.iterdir():
            if not entry.is_file():
                continue
            total_size += entry.stat().st_size
            entry.unlink()
            count += 1

        logger.info(f"已清理 {count} 个缓存文件 ({total_size} 字节)")
        return count, total_size
