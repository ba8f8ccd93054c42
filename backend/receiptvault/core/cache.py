"""Best-effort Redis JSON cache for rule lists and workflow configs.

A cache outage degrades to direct store reads: every Redis error is logged
and treated as a miss (reads) or a no-op (writes, deletes).
"""
import json
import logging
from typing import Any

import redis

from receiptvault.core.config import settings

logger = logging.getLogger(__name__)

_client: redis.Redis | None = None


def get_client() -> redis.Redis:
    global _client
    if _client is None:
        _client = redis.Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
    return _client


def rules_version_key(company_id) -> str:
    return f"approval_rules:{company_id}:version"


def rules_key(company_id, active_only: bool, version: int) -> str:
    return f"approval_rules:{company_id}:v{version}:{'active' if active_only else 'all'}"


def workflow_config_key(company_id) -> str:
    return f"workflow_config:{company_id}"


def get_json(key: str) -> Any | None:
    if not settings.CACHE_ENABLED:
        return None
    try:
        raw = get_client().get(key)
    except redis.RedisError as exc:
        logger.warning("Cache get failed for %s, falling back to store: %s", key, exc)
        return None
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Discarding undecodable cache entry %s", key)
        delete(key)
        return None


def set_json(key: str, value: Any, ttl_seconds: int) -> None:
    if not settings.CACHE_ENABLED:
        return
    try:
        get_client().set(key, json.dumps(value, default=str), ex=ttl_seconds)
    except redis.RedisError as exc:
        logger.warning("Cache set failed for %s: %s", key, exc)


def delete(*keys: str) -> None:
    if not settings.CACHE_ENABLED or not keys:
        return
    try:
        get_client().delete(*keys)
    except redis.RedisError as exc:
        # Stale entries age out via TTL.
        logger.warning("Cache delete failed for %s: %s", ", ".join(keys), exc)


def get_version(key: str) -> int | None:
    """Current value of a version counter; 0 when unset, None when the cache is unusable."""
    if not settings.CACHE_ENABLED:
        return None
    try:
        raw = get_client().get(key)
    except redis.RedisError as exc:
        logger.warning("Cache version read failed for %s: %s", key, exc)
        return None
    try:
        return int(raw) if raw is not None else 0
    except (TypeError, ValueError):
        logger.warning("Discarding non-numeric version counter %s", key)
        delete(key)
        return None


def bump_version(key: str) -> None:
    if not settings.CACHE_ENABLED:
        return
    try:
        get_client().incr(key)
    except redis.RedisError as exc:
        logger.warning("Cache version bump failed for %s: %s", key, exc)
