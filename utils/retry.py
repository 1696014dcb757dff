import logging
import random
import time
from config import RETRY_BASE_DELAY, RETRY_JITTER, RETRY_MAX_ATTEMPTS
from core.errors import ExternalServiceError
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with jitter, shared by every external integration"""

    max_attempts: int = RETRY_MAX_ATTEMPTS
    base_delay: float = RETRY_BASE_DELAY
    jitter: float = RETRY_JITTER

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number `attempt` (1-based)"""
        return self.base_delay * (2 ** (attempt - 1)) + random.uniform(0, self.jitter)

    def call(self, fn, *args, **kwargs):
        """
        Call fn, retrying retryable ExternalServiceErrors

        Non-retryable errors and the last retryable error are re-raised.
        """
        attempts = max(self.max_attempts, 1)
        for attempt in range(1, attempts + 1):
            try:
                return fn(*args, **kwargs)
            except ExternalServiceError as e:
                if not e.retryable or attempt == attempts:
                    raise
                sleep_seconds = self.delay(attempt)
                logger.warning(f"{e} (attempt {attempt}/{attempts}), retrying in {sleep_seconds:.2f}s")
                time.sleep(sleep_seconds)


NO_RETRY = RetryPolicy(max_attempts=1, base_delay=0.0, jitter=0.0)
