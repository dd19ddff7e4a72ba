# marketplace/utils/retry.py
from dataclasses import dataclass

import redis
import requests
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from marketplace.utils.errors import ConcurrencyConflictError


@dataclass(frozen=True)
class RetryPolicy:
    """
    One retry policy for every service-client boundary.
    Backoff is exponential from base_delay up to max_delay, plus random jitter.
    """

    max_attempts: int = 3
    base_delay: float = 0.3
    max_delay: float = 3.0
    jitter: float = 0.2

    def decorator(self, *exception_types):
        return retry(
            reraise=True,
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay, min=self.base_delay, max=self.max_delay)
            + wait_random(0, self.jitter),
            retry=retry_if_exception_type(exception_types),
        )


HTTP_POLICY = RetryPolicy(max_attempts=3, base_delay=0.3, max_delay=3.0)
REDIS_POLICY = RetryPolicy(max_attempts=3, base_delay=0.2, max_delay=2.0)
GATEWAY_POLICY = RetryPolicy(max_attempts=3, base_delay=0.5, max_delay=4.0, jitter=0.5)


def http_retry():
    return HTTP_POLICY.decorator(requests.ConnectionError, requests.Timeout)


def redis_retry():
    return REDIS_POLICY.decorator(redis.RedisError)


def gateway_retry():
    #only transport failures are retried, a 4xx from the gateway is final
    return GATEWAY_POLICY.decorator(requests.ConnectionError, requests.Timeout)


# optimistic-lock conflicts are resolved by re-reading and trying again, no long backoff
CONFLICT_POLICY = RetryPolicy(max_attempts=5, base_delay=0.01, max_delay=0.2, jitter=0.05)


def conflict_retry():
    return CONFLICT_POLICY.decorator(ConcurrencyConflictError)
