# marketplace/utils/retry.py
import time
from typing import Callable

import redis
import requests
from tenacity import (
    Retrying,
    retry,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)


def http_retry():
    return retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.3, min=0.3, max=3),
        retry=retry_if_exception_type(requests.RequestException),
    )


def redis_retry():
    return retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(redis.RedisError),
    )


def poll_retrying(
    rechecks: int,
    base_seconds: float,
    is_pending: Callable[[object], bool],
    transient: tuple[type[BaseException], ...],
    sleep: Callable[[float], None] = time.sleep,
) -> Retrying:
    """
    First poll runs immediately, then up to `rechecks` re-polls,
    waiting base, 2*base, 4*base ... before each one.
    """
    return Retrying(
        reraise=True,
        stop=stop_after_attempt(rechecks + 1),
        wait=wait_exponential(multiplier=base_seconds, exp_base=2),
        retry=retry_if_result(is_pending) | retry_if_exception_type(transient),
        sleep=sleep,
    )
