"""Bounded fixed-delay retry bookkeeping."""

import logging

logger = logging.getLogger(__name__)


class RetryController:
    """
    Counts consecutive save failures.

    record_failure() says whether another automatic attempt is allowed. The
    delay is fixed (retry_delay_ms), never exponential. The counter only goes
    back to zero on reset(), which the engine calls after a successful save
    or an engine reset.
    """

    def __init__(self, max_retries: int = 3, retry_delay_ms: int = 5000):
        self.max_retries = max_retries
        self.retry_delay_ms = retry_delay_ms
        self._retry_count = 0
        self._exhausted = False

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def exhausted(self) -> bool:
        """True once a failure arrived with no retries left."""
        return self._exhausted

    @property
    def retrying(self) -> bool:
        return self._retry_count > 0 and not self._exhausted

    def record_failure(self) -> bool:
        """Register a failure. Returns True if a retry should be scheduled."""
        if self._retry_count < self.max_retries:
            self._retry_count += 1
            self._exhausted = False
            logger.info(f"RETRY: scheduling attempt {self._retry_count}/{self.max_retries} in {self.retry_delay_ms}ms")
            return True
        self._exhausted = True
        logger.warning(f"RETRY: exhausted after {self._retry_count} retries")
        return False

    def reset(self) -> None:
        if self._retry_count:
            logger.debug(f"RETRY: counter reset from {self._retry_count}")
        self._retry_count = 0
        self._exhausted = False
