"""
Fixed-delay retry policy.

Used around uploads: a fixed number of attempts with a constant pause and no
backoff. The sleep function is injectable so tests can run without waiting.
"""

import time
import logging
from dataclasses import dataclass, field
from typing import Callable, Tuple, Type

from tenacity import Retrying, stop_after_attempt, wait_fixed, retry_if_exception_type


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    delay: float = 5.0
    retry_on: Tuple[Type[BaseException], ...] = (Exception,)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False, compare=False)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")

    def _log_retry(self, retry_state):
        logger.info(
            f"Attempt {retry_state.attempt_number}/{self.max_attempts} failed: "
            f"{retry_state.outcome.exception()}. Retrying in {self.delay:g}s"
        )

    def retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.delay),
            retry=retry_if_exception_type(self.retry_on),
            sleep=self.sleep,
            before_sleep=self._log_retry,
            reraise=True
        )

    def call(self, func: Callable, *args, **kwargs):
        """
        Call func until it succeeds or attempts run out.

        Returns:
            Whatever func returns on the first successful attempt

        Raises:
            The last exception raised by func once max_attempts is reached.
            Exceptions outside retry_on propagate immediately.
        """
        return self.retrying()(func, *args, **kwargs)


def no_wait(max_attempts: int = 3) -> RetryPolicy:
    """Same attempt count, no pause between attempts."""
    return RetryPolicy(max_attempts=max_attempts, delay=0, sleep=lambda seconds: None)
