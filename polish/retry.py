"""Bounded automatic retry around a whole revision run."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, TypeVar

from .config import MAX_ATTEMPTS, RETRY_DELAY_SECONDS
from .errors import CompletionError, RevisionFailedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryCallback = Callable[[int, int, Exception], None]


class RetryController:
    """Re-run an operation from scratch after a completion failure.

    `on_retry(attempt, max_attempts, error)` fires before each new attempt,
    with `attempt` counting from 2.
    """

    def __init__(
        self,
        max_attempts: int = MAX_ATTEMPTS,
        delay: float = RETRY_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        on_retry: Optional[RetryCallback] = None,
    ):
        self.max_attempts = max_attempts
        self.delay = delay
        self.sleep = sleep
        self.on_retry = on_retry
        self.retry_count = 0

    def run(self, operation: Callable[[], T]) -> T:
        self.retry_count = 0
        attempt = 1
        try:
            while True:
                try:
                    return operation()
                except CompletionError as exc:
                    if attempt >= self.max_attempts:
                        logger.error("Giving up after %d attempts: %s", attempt, exc)
                        raise RevisionFailedError(attempt, exc) from exc
                    logger.warning(
                        "Attempt %d of %d failed: %s; retrying in %.1fs",
                        attempt,
                        self.max_attempts,
                        exc,
                        self.delay,
                    )
                    self.retry_count += 1
                    attempt += 1
                    self.sleep(self.delay)
                    if self.on_retry:
                        self.on_retry(attempt, self.max_attempts, exc)
        finally:
            self.retry_count = 0
