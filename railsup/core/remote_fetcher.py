"""
远程版本获取模块。

从 GitHub Releases 获取可下载的预编译 Ruby 版本列表。
"""

from typing import List, Optional

import requests

from railsup.core import version_utils
from railsup.utils.logger import get_logger
from railsup.utils.retry import RetryHandler

logger = get_logger()

GITHUB_API_RELEASES = "https://api.github.com/repos/railsup-sh/ruby/releases"
DEFAULT_RUBY_VERSION = "4.0.1"
AVAILABLE_VERSIONS = ("4.0.1", "3.4.8")
REQUEST_TIMEOUT = 10


class RemoteFetcher:
    """
    远程版本获取器类。

    网络不可用时退回内置的版本列表。
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        retry_handler: Optional[RetryHandler] = None,
    ):
        """
        初始化远程版本获取器。

        参数:
            session: requests 会话，默认新建
            retry_handler: 重试处理器
        """
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", "railsup")
        self.retry_handler = retry_handler or RetryHandler(max_retries=2)

    def _fetch_release_tags(self) -> List[str]:
        def _do_request():
            response = self.session.get(GITHUB_API_RELEASES, timeout=REQUEST_TIMEOUT)
            response.raise_for_status()
            return response

        response = self.retry_handler.execute(_do_request)
        releases = response.json()
        if not isinstance(releases, list):
            raise ValueError("GitHub releases 响应格式无效")
        return [r.get("tag_name", "") for r in releases if isinstance(r, dict)]

    def get_remote_versions(self) -> List[str]:
        """
        获取可下载的 Ruby 版本。

        返回:
            版本号列表，新版本在前
        """
        try:
            tags = self._fetch_release_tags()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning(f"获取远程版本失败，使用内置列表: {e}")
            return list(AVAILABLE_VERSIONS)

        versions = []
        for tag in tags:
            version = tag.strip().lstrip("vV")
            if version_utils.is_version_id(version) and version not in versions:
                versions.append(version)

        if not versions:
            logger.warning("远程没有可用版本，使用内置列表")
            return list(AVAILABLE_VERSIONS)

        return version_utils.sort_versions_desc(versions)
