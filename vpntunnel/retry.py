"""
Bounded retry policy for delete operations that race with dependent resources.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Tuple, Type

from botocore.exceptions import ClientError
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from .errors import CleanupPartialFailure

logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    """Fixed number of attempts with a fixed delay; exhaustion is a CleanupPartialFailure."""
    attempts: int = 5
    delay: float = 5.0
    retry_on: Tuple[Type[BaseException], ...] = (ClientError,)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def run(self, operation: Callable[[], None], resource: str) -> None:
        """
        Run ``operation`` until it succeeds or the attempts are used up.

        Args:
            operation: Zero-argument callable performing the delete
            resource: Human-readable resource label for log lines

        Raises:
            CleanupPartialFailure: If every attempt failed
        """
        def _log_retry(retry_state):
            error = retry_state.outcome.exception()
            logger.info(
                f"Deleting {resource} failed, retrying in {self.delay:g}s... "
                f"({retry_state.attempt_number}/{self.attempts}): {error}"
            )

        retrying = Retrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_fixed(self.delay),
            retry=retry_if_exception_type(self.retry_on),
            sleep=self.sleep,
            before_sleep=_log_retry,
        )
        try:
            retrying(operation)
        except RetryError as e:
            raise CleanupPartialFailure(resource, self.attempts, e.last_attempt.exception()) from None
