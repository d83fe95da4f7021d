# marketplace/services/lock_service.py
import json
import uuid
from typing import Any

import redis

from marketplace.utils.logging import get_logger
from marketplace.utils.retry import redis_retry
from marketplace.utils.settings import (
    CHECKOUT_LOCK_TTL_SECONDS,
    IDEMPOTENCY_TTL_SECONDS,
    REDIS_URL,
)

logger = get_logger(__name__)

# compare-and-delete: only the holder's token may release the key
_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""


class LockService:
    """
    - per-customer checkout lock (SET NX EX)
    - release through Lua so an expired lock taken over by someone else is not deleted
    - stored checkout results for Idempotency-Key replays
    - processed webhook event ids, so a redelivered event is applied once
    """

    def __init__(self, url: str | None = None, client: Any = None):
        self.redis = client if client is not None else redis.Redis.from_url(
            url or REDIS_URL,
            decode_responses=True,
        )

    @staticmethod
    def checkout_key(customer_id: int) -> str:
        return f"checkout:{customer_id}:lock"

    @staticmethod
    def idempotency_key(customer_id: int, key: str) -> str:
        return f"checkout:{customer_id}:idem:{key}"

    @staticmethod
    def webhook_event_key(event_id: str) -> str:
        return f"webhook:event:{event_id}"

    @redis_retry()
    def acquire_checkout_lock(self, customer_id: int, ttl: int = CHECKOUT_LOCK_TTL_SECONDS) -> str | None:
        """Returns the holder token, or None when another checkout holds the lock."""
        key = self.checkout_key(customer_id)
        token = uuid.uuid4().hex
        logger.info(f"Acquire lock {key}")
        acquired = self.redis.set(name=key, value=token, nx=True, ex=ttl)
        return token if acquired else None

    @redis_retry()
    def release_checkout_lock(self, customer_id: int, token: str) -> bool:
        key = self.checkout_key(customer_id)
        logger.info(f"Release lock {key}")
        return bool(self.redis.eval(_RELEASE_LUA, 1, key, token))

    @redis_retry()
    def get_result(self, customer_id: int, key: str) -> dict | None:
        raw = self.redis.get(self.idempotency_key(customer_id, key))
        if raw is None:
            return None
        return json.loads(raw)

    @redis_retry()
    def store_result(
        self,
        customer_id: int,
        key: str,
        result: dict,
        ttl: int = IDEMPOTENCY_TTL_SECONDS,
    ) -> None:
        self.redis.set(
            name=self.idempotency_key(customer_id, key),
            value=json.dumps(result),
            ex=ttl,
        )

    @redis_retry()
    def event_processed(self, event_id: str) -> bool:
        return self.redis.get(self.webhook_event_key(event_id)) is not None

    @redis_retry()
    def mark_event_processed(self, event_id: str, ttl: int = IDEMPOTENCY_TTL_SECONDS) -> None:
        self.redis.set(name=self.webhook_event_key(event_id), value="1", ex=ttl)
