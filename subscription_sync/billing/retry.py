"""
Retry utilities for transient gateway failures
"""
import logging
import random
import time
from typing import Any, Callable

logger = logging.getLogger(__name__)


class RetryConfig:
    """Configuration for retry behavior"""
    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 5.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
    ):
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay for exponential backoff with jitter"""
    delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    delay = min(delay, config.max_delay)

    if config.jitter:
        delay *= (0.5 + random.random() * 0.5)

    return delay


def retry_call(
    func: Callable[[], Any],
    config: RetryConfig,
    should_retry: Callable[[Exception], bool],
    sleep: Callable[[float], None] = time.sleep,
    label: str = "call",
) -> Any:
    """Run func, retrying exceptions accepted by should_retry with backoff."""
    for attempt in range(1, config.max_attempts + 1):
        try:
            return func()
        except Exception as e:
            if not should_retry(e):
                raise
            if attempt == config.max_attempts:
                if config.max_attempts > 1:
                    logger.error("Max retry attempts (%s) reached for %s", config.max_attempts, label)
                raise

            delay = calculate_delay(attempt, config)
            logger.warning(
                "Attempt %s/%s failed for %s: %s. Retrying in %.2fs",
                attempt, config.max_attempts, label, e, delay,
            )
            sleep(delay)
