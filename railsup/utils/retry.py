"""
重试模块。

下载 Ruby 归档、校验和文件以及查询 GitHub Releases 时，对临时性网络错误
按指数退避重试。其他错误（包括 404 之类的客户端错误）立即抛出。
"""

import random
import time
from typing import Any, Callable, Iterator, Optional, TypeVar

import requests

from railsup.utils.logger import get_logger

logger = get_logger()

T = TypeVar('T')

RETRYABLE_EXCEPTIONS = (
    requests.exceptions.Timeout,
    requests.exceptions.ConnectionError,
    requests.exceptions.ChunkedEncodingError,
    requests.exceptions.HTTPError,
)

# 4xx 中只有请求超时和限流值得重试
RETRYABLE_STATUS_CODES = (408, 429)


def _status_code(exception: Exception) -> Optional[int]:
    response = getattr(exception, "response", None)
    return getattr(response, "status_code", None)


def is_retryable(exception: Exception) -> bool:
    """
    判断一次失败的请求是否值得重试。

    参数:
        exception: 请求抛出的异常

    返回:
        网络层错误、5xx、408、429 返回 True
    """
    if not isinstance(exception, RETRYABLE_EXCEPTIONS):
        return False
    if isinstance(exception, requests.exceptions.HTTPError):
        status = _status_code(exception)
        return status is None or status >= 500 or status in RETRYABLE_STATUS_CODES
    return True


class RetryHandler:
    """
    重试处理器。

    第 n 次重试前等待 base_delay * backoff_factor**n 秒，不超过 max_delay；
    开启 jitter 时实际等待时间在该值的一半到全部之间。
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        backoff_factor: float = 2.0,
        jitter: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        参数:
            max_retries: 首次请求之外最多重试的次数
            base_delay: 第一次重试前的等待时间（秒）
            max_delay: 单次等待的上限（秒）
            backoff_factor: 退避因子
            jitter: 是否加入随机抖动
            sleep: 等待函数，测试中替换为不阻塞的实现
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.jitter = jitter
        self._sleep = sleep

    def _calculate_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.backoff_factor ** attempt), self.max_delay)
        if self.jitter:
            delay *= 0.5 + random.random() * 0.5
        return delay

    def delays(self) -> Iterator[float]:
        """依次给出每次重试前的等待时间，共 max_retries 个。"""
        for attempt in range(self.max_retries):
            yield self._calculate_delay(attempt)

    def execute(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        调用 func，遇到可重试的错误时等待后再次调用。

        参数:
            func: 发起请求的函数
            *args: 位置参数
            **kwargs: 关键字参数

        返回:
            func 的返回值

        抛出:
            不可重试的错误立即抛出；重试用尽后抛出最后一次的错误
        """
        attempts = self.max_retries + 1
        delays = self.delays()
        attempt = 0
        while True:
            attempt += 1
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if not is_retryable(e):
                    logger.debug(f"请求失败且不可重试: {e}")
                    raise
                delay = next(delays, None)
                if delay is None:
                    logger.error(f"请求在 {attempts} 次尝试后仍然失败: {e}")
                    raise
                logger.warning(f"请求失败 ({attempt}/{attempts}): {e}，{delay:.2f} 秒后重试")
                self._sleep(delay)
