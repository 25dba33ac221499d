from __future__ import annotations

from contextlib import contextmanager
import logging
import threading
import time
from typing import Iterator, Optional

from redis import Redis

from tinkertank.core.config import settings
from tinkertank.core.exceptions import ReconciliationInProgressException
from tinkertank.core.ulid_helper import generate_ulid
from tinkertank.monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

_SYNC_REDIS: Optional[Redis] = None
_SYNC_REDIS_LOCK = threading.Lock()

# Delete only if the stored token is ours; an expired holder must not free a newer lock.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


def _lock_key(order_id: str) -> str:
    return f"order:{order_id}:reconcile"


def _namespaced_key(key: str) -> str:
    return f"{settings.lock_namespace}:lock:{key}"


def _get_sync_redis() -> Optional[Redis]:
    global _SYNC_REDIS
    if _SYNC_REDIS is not None:
        return _SYNC_REDIS
    with _SYNC_REDIS_LOCK:
        if _SYNC_REDIS is not None:
            return _SYNC_REDIS
        try:
            client = Redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            client.ping()
        except Exception as exc:
            logger.warning("order_lock_redis_unavailable: %s", exc)
            return None
        _SYNC_REDIS = client
        return _SYNC_REDIS


def _backoff(attempt: int) -> float:
    return min(0.05 * (2**attempt), 0.5)


def acquire_order_lock(
    order_id: str,
    *,
    ttl_s: Optional[int] = None,
    wait_s: Optional[float] = None,
) -> Optional[str]:
    """
    Acquire the reconciliation lock for an order.

    Polls until ``wait_s`` elapses. Returns the lock token, or None when Redis
    is unavailable and the lock degraded open.

    Raises:
        ReconciliationInProgressException: If another holder kept the lock
            for the whole wait budget
    """
    ttl = ttl_s if ttl_s is not None else settings.reconcile_lock_ttl_s
    wait = wait_s if wait_s is not None else settings.reconcile_lock_wait_s

    client = _get_sync_redis()
    if client is None:
        prometheus_metrics.record_order_lock("acquire", "redis_unavailable")
        logger.warning("order_lock_degraded_open", extra={"order_id": order_id})
        return None

    token = generate_ulid()
    key = _namespaced_key(_lock_key(order_id))
    deadline = time.monotonic() + wait
    attempt = 0
    while True:
        try:
            acquired = bool(client.set(key, token, nx=True, ex=ttl))
        except Exception as exc:
            prometheus_metrics.record_order_lock("acquire", "error")
            logger.warning(
                "order_lock_acquire_failed",
                extra={
                    "order_id": order_id,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            return None
        if acquired:
            prometheus_metrics.record_order_lock("acquire", "success")
            return token
        if time.monotonic() >= deadline:
            prometheus_metrics.record_order_lock("acquire", "blocked")
            raise ReconciliationInProgressException(order_id)
        time.sleep(_backoff(attempt))
        attempt += 1


def release_order_lock(order_id: str, token: Optional[str]) -> None:
    if token is None:
        return
    client = _get_sync_redis()
    if client is None:
        prometheus_metrics.record_order_lock("release", "redis_unavailable")
        return
    try:
        released = client.eval(_RELEASE_SCRIPT, 1, _namespaced_key(_lock_key(order_id)), token)
        prometheus_metrics.record_order_lock("release", "success" if released else "not_owner")
    except Exception as exc:
        prometheus_metrics.record_order_lock("release", "error")
        logger.warning(
            "order_lock_release_failed",
            extra={
                "order_id": order_id,
                "error": str(exc),
                "error_type": type(exc).__name__,
            },
        )


@contextmanager
def order_lock(
    order_id: str,
    *,
    ttl_s: Optional[int] = None,
    wait_s: Optional[float] = None,
) -> Iterator[bool]:
    """Hold the per-order reconciliation lock; yields False when degraded open."""
    token = acquire_order_lock(order_id, ttl_s=ttl_s, wait_s=wait_s)
    try:
        yield token is not None
    finally:
        release_order_lock(order_id, token)
