"""
Storage scopes used by the pending intent store.

    MemoryScope      short-lived, dies with the browsing context
    RedisScope       durable, survives context closes (Redis, per-context keys)
    QueryParamScope  read-only view over the redirect's query parameters

Redis Key Pattern (durable scope):
    {namespace}:{context_id}:{key}
"""

import logging
from typing import Dict, Iterable, Mapping, Optional

import redis

from .exceptions import StorageError

logger = logging.getLogger("session_bootstrap.storage")


class MemoryScope:
    """Short-lived scope. ``clear()`` models the browsing context closing."""

    name = "short_lived"

    def __init__(self, initial: Optional[Mapping[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        # Lifetime is bounded by the context itself; ttl is not tracked here.
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> Iterable[str]:
        return list(self._data.keys())

    def clear(self) -> None:
        self._data.clear()


class RedisScope:
    """Durable scope backed by Redis."""

    name = "durable"

    def __init__(self, redis_client=None, namespace: str = "session_bootstrap", context_id: str = "default"):
        self._redis = redis_client
        self.namespace = namespace
        self.context_id = context_id

    @property
    def redis(self):
        if self._redis is None:
            from .redis_client import get_redis
            self._redis = get_redis()
        return self._redis

    def _build_key(self, key: str) -> str:
        return f"{self.namespace}:{self.context_id}:{key}"

    def get(self, key: str) -> Optional[str]:
        try:
            raw = self.redis.get(self._build_key(key))
        except redis.RedisError as e:
            # An unreachable durable scope reads as empty; other sources still apply
            logger.error(f"[STORAGE] Durable get error key={key}: {e}")
            return None
        if raw is None:
            return None
        return raw if isinstance(raw, str) else raw.decode()

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        """
        Raises:
            StorageError: If Redis refused or could not be reached
        """
        full_key = self._build_key(key)
        try:
            if ttl_seconds:
                self.redis.setex(full_key, ttl_seconds, value)
            else:
                self.redis.set(full_key, value)
        except redis.RedisError as e:
            logger.error(f"[STORAGE] Durable set error key={key}: {e}")
            raise StorageError(f"durable write failed for {key}") from e

    def remove(self, key: str) -> None:
        try:
            self.redis.delete(self._build_key(key))
        except redis.RedisError as e:
            logger.error(f"[STORAGE] Durable delete error key={key}: {e}")

    def keys(self) -> Iterable[str]:
        prefix = self._build_key("")
        try:
            found = list(self.redis.scan_iter(match=f"{prefix}*"))
        except redis.RedisError as e:
            logger.error(f"[STORAGE] Durable scan error: {e}")
            return []
        result = []
        for raw in found:
            full = raw if isinstance(raw, str) else raw.decode()
            result.append(full[len(prefix):])
        return result


class QueryParamScope:
    """
    The current page's query parameters.

    Read-only: removing a key only drops it from this view so a second read in
    the same flow sees nothing.
    """

    name = "query_params"

    def __init__(self, params: Optional[Mapping[str, str]] = None):
        self._params: Dict[str, str] = {k: v for k, v in (params or {}).items() if v is not None}

    def get(self, key: str) -> Optional[str]:
        return self._params.get(key)

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        raise TypeError("query parameters are read-only")

    def remove(self, key: str) -> None:
        self._params.pop(key, None)

    def keys(self) -> Iterable[str]:
        return list(self._params.keys())
