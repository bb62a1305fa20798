"""Redis client helpers: event channel, last-event cache and scan locks."""

import asyncio
import json
import logging
from collections.abc import Generator
from contextlib import contextmanager
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

import redis as sync_redis
import redis.asyncio as aioredis

from gatekeeper.core.config import get_settings

logger = logging.getLogger(__name__)

EVENTS_PREFIX = "gatekeeper:events:"
LAST_EVENT_PREFIX = "gatekeeper:events:last:"
LAST_EVENT_TTL = 3600  # 1 hour
SCAN_LOCK_PREFIX = "gatekeeper:scan-lock:"

# Events that end a subscription stream
TERMINAL_EVENTS = {"scan:complete", "scan:failed", "pr:analyzed", "pr:failed"}


@lru_cache
def get_sync_redis_pool() -> sync_redis.ConnectionPool:
    """Sync Redis pool for workers and the event publisher."""
    return sync_redis.ConnectionPool.from_url(
        get_settings().redis_url,
        decode_responses=True,
        max_connections=50,
    )


@lru_cache
def get_async_redis_pool() -> aioredis.ConnectionPool:
    """Async Redis pool for FastAPI handlers."""
    return aioredis.ConnectionPool.from_url(
        get_settings().redis_url,
        decode_responses=True,
    )


@contextmanager
def get_sync_redis_context() -> Generator[sync_redis.Redis, None, None]:
    """Context manager for sync Redis client.

    Ensures the connection is returned to the pool after use.
    """
    client = sync_redis.Redis(connection_pool=get_sync_redis_pool())
    try:
        yield client
    finally:
        client.close()


async def close_redis_pools() -> None:
    """Close Redis connection pools on shutdown."""
    if get_async_redis_pool.cache_info().currsize:
        await get_async_redis_pool().disconnect()
    if get_sync_redis_pool.cache_info().currsize:
        get_sync_redis_pool().disconnect()


def get_events_channel(repo_id: str) -> str:
    """Get Redis channel name for a repository's events."""
    return f"{EVENTS_PREFIX}{repo_id}"


def get_last_event_key(repo_id: str) -> str:
    """Get Redis key holding the last event published for a repository."""
    return f"{LAST_EVENT_PREFIX}{repo_id}"


def publish_event(repo_id: str, event_type: str, data: dict[str, Any] | None = None) -> bool:
    """Broadcast an event for a repository (sync, fire-and-forget).

    Publishes to the repository channel and stores the payload as the last
    known event so late subscribers can catch up. Never raises: delivery
    problems are logged and reported through the return value.
    """
    payload_dict: dict[str, Any] = {
        "repo_id": repo_id,
        "event_type": event_type,
        "timestamp": datetime.now(UTC).isoformat(),
    }
    if data:
        payload_dict.update(data)

    try:
        payload = json.dumps(payload_dict, default=str)
        with get_sync_redis_context() as redis_client:
            redis_client.setex(get_last_event_key(repo_id), LAST_EVENT_TTL, payload)
            redis_client.publish(get_events_channel(repo_id), payload)
        logger.debug(f"Published {event_type} for {repo_id}")
        return True
    except Exception as e:
        logger.warning(f"Failed to publish {event_type} for {repo_id}: {e}")
        return False


async def get_last_event(repo_id: str) -> str | None:
    """Get the last published event for a repository (async, for FastAPI)."""
    async with aioredis.Redis(connection_pool=get_async_redis_pool()) as client:
        result = await client.get(get_last_event_key(repo_id))
        return str(result) if result else None


async def subscribe_events(repo_id: str, timeout_seconds: int = 600):
    """
    Subscribe to a repository's events (async generator for SSE).

    Yields JSON-encoded events until a terminal event arrives or the timeout
    elapses. Emits keepalive comments every 30 seconds of silence.
    """
    client = aioredis.Redis(connection_pool=get_async_redis_pool())
    pubsub = client.pubsub()
    channel = get_events_channel(repo_id)

    loop = asyncio.get_running_loop()
    start_time = loop.time()
    last_message_time = start_time
    keepalive_interval = 30

    try:
        await pubsub.subscribe(channel)
        logger.info(f"Subscribed to channel: {channel}")

        while True:
            current_time = loop.time()

            if current_time - start_time > timeout_seconds:
                logger.warning(f"Event subscription for {repo_id} timed out after {timeout_seconds}s")
                yield json.dumps({
                    "repo_id": repo_id,
                    "event_type": "timeout",
                    "message": "Connection timed out. Refresh to check status.",
                })
                break

            wait_timeout = max(0.1, keepalive_interval - (current_time - last_message_time))
            try:
                message = await asyncio.wait_for(
                    pubsub.get_message(ignore_subscribe_messages=True, timeout=wait_timeout),
                    timeout=wait_timeout + 1,
                )
            except TimeoutError:
                message = None

            if message and message["type"] == "message":
                last_message_time = loop.time()
                data = message["data"]
                if isinstance(data, bytes):
                    data = data.decode("utf-8")
                yield data

                try:
                    if json.loads(data).get("event_type") in TERMINAL_EVENTS:
                        return
                except json.JSONDecodeError:
                    pass
            elif loop.time() - last_message_time >= keepalive_interval:
                last_message_time = loop.time()
                yield ": keepalive\n"

    finally:
        await pubsub.unsubscribe(channel)
        await pubsub.aclose()
        await client.aclose()


@contextmanager
def repository_lock(repo_id: str, timeout_seconds: int = 30 * 60) -> Generator[None, None, None]:
    """Serialize full scans of the same repository across worker processes."""
    with get_sync_redis_context() as redis_client:
        lock = redis_client.lock(
            f"{SCAN_LOCK_PREFIX}{repo_id}",
            timeout=timeout_seconds,
            blocking_timeout=timeout_seconds,
        )
        if not lock.acquire():
            raise TimeoutError(f"Could not acquire scan lock for {repo_id}")
        try:
            yield
        finally:
            try:
                lock.release()
            except sync_redis.exceptions.LockError:
                logger.warning(f"Scan lock for {repo_id} expired before release")


def ping_broker(url: str, timeout_seconds: float = 2.0) -> bool:
    """Check that a Redis broker answers."""
    client = sync_redis.Redis.from_url(
        url,
        socket_connect_timeout=timeout_seconds,
        socket_timeout=timeout_seconds,
    )
    try:
        return bool(client.ping())
    except sync_redis.RedisError as e:
        logger.warning(f"Broker {url.split('@')[-1]} unreachable: {e}")
        return False
    finally:
        client.close()
