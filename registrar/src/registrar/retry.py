"""
Retry policy for async operations.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar, Union

from loguru import logger

T = TypeVar("T")

RetryClassifier = Union[tuple[type[BaseException], ...], Callable[[BaseException], bool]]


@dataclass
class RetryPolicy:
    """
    Run an operation up to max_attempts times.

    retry_on decides which failures are retried: a tuple of exception types
    or a predicate. before_retry, if given, is awaited before each new attempt
    (for example to refresh wallet UTXOs from the node).
    """

    max_attempts: int = 2
    retry_on: RetryClassifier = (Exception,)
    before_retry: Callable[[BaseException], Awaitable[None]] | None = None

    def should_retry(self, error: BaseException) -> bool:
        if isinstance(self.retry_on, tuple):
            return isinstance(error, self.retry_on)
        return bool(self.retry_on(error))

    async def run(self, operation: Callable[[], Awaitable[T]], description: str = "operation") -> T:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as e:
                if attempt >= self.max_attempts or not self.should_retry(e):
                    raise
                logger.warning(
                    f"{description} failed (attempt {attempt}/{self.max_attempts}): {e}, retrying"
                )
                if self.before_retry is not None:
                    await self.before_retry(e)
                attempt += 1
