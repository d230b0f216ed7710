"""
Retry Utilities
Exponential backoff for unreliable upstream calls
"""

import logging
import time
from dataclasses import dataclass
from functools import wraps

import requests

from commercialx.utils.errors import (
    InvalidInputError,
    NotFoundError,
    UpstreamUnavailableError,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_INITIAL_DELAY = 1.0
DEFAULT_MAX_DELAY = 10.0


def is_transient_error(error):
    """Return True when an error is worth another attempt"""
    if isinstance(error, (InvalidInputError, NotFoundError)):
        return False
    if isinstance(error, UpstreamUnavailableError):
        return error.transient
    if isinstance(error, (requests.exceptions.Timeout, requests.exceptions.ConnectionError)):
        return True
    return isinstance(error, (TimeoutError, ConnectionError))


def backoff_delay(attempt, initial_delay=DEFAULT_INITIAL_DELAY, max_delay=DEFAULT_MAX_DELAY):
    """Delay in seconds before retry number ``attempt`` (0-based)"""
    return min(initial_delay * (2 ** attempt), max_delay)


def retry_with_backoff(fn, max_attempts=DEFAULT_MAX_ATTEMPTS,
                       initial_delay=DEFAULT_INITIAL_DELAY,
                       max_delay=DEFAULT_MAX_DELAY,
                       should_retry=is_transient_error,
                       sleep=None):
    """
    Call ``fn`` until it succeeds, a non-retryable error is raised, or
    ``max_attempts`` calls have been made

    Args:
        fn: zero-argument callable
        max_attempts (int): total number of calls, at least 1
        initial_delay (float): seconds to wait before the first retry
        max_delay (float): upper bound on any single wait
        should_retry: predicate deciding whether an error is retryable
        sleep: wait function, time.sleep when omitted

    Returns:
        whatever ``fn`` returns

    Raises:
        the last error raised by ``fn``
    """
    if max_attempts < 1:
        raise ValueError('max_attempts must be at least 1')
    sleep = sleep or time.sleep

    for attempt in range(max_attempts):
        try:
            return fn()
        except Exception as e:
            is_last = attempt == max_attempts - 1
            if is_last or not should_retry(e):
                raise

            delay = backoff_delay(attempt, initial_delay, max_delay)
            logger.warning(
                "Attempt %d/%d failed (%s), retrying in %.2fs",
                attempt + 1, max_attempts, e, delay
            )
            sleep(delay)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry settings, usually built from AppConfig"""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    initial_delay: float = DEFAULT_INITIAL_DELAY
    max_delay: float = DEFAULT_MAX_DELAY

    @classmethod
    def from_config(cls, config):
        return cls(
            max_attempts=config.RETRY_MAX_ATTEMPTS,
            initial_delay=config.RETRY_INITIAL_DELAY_SECONDS,
            max_delay=config.RETRY_MAX_DELAY_SECONDS,
        )

    def call(self, fn, should_retry=is_transient_error, sleep=None):
        return retry_with_backoff(
            fn,
            max_attempts=self.max_attempts,
            initial_delay=self.initial_delay,
            max_delay=self.max_delay,
            should_retry=should_retry,
            sleep=sleep,
        )


def with_retry(max_attempts=DEFAULT_MAX_ATTEMPTS,
               initial_delay=DEFAULT_INITIAL_DELAY,
               max_delay=DEFAULT_MAX_DELAY,
               should_retry=is_transient_error):
    """Decorator form of retry_with_backoff"""
    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            return retry_with_backoff(
                lambda: f(*args, **kwargs),
                max_attempts=max_attempts,
                initial_delay=initial_delay,
                max_delay=max_delay,
                should_retry=should_retry,
            )
        return wrapper
    return decorator
