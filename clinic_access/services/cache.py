"""Effective-permission cache powered by Upstash Redis with in-memory fallback."""

from __future__ import annotations

import json
from dataclasses import dataclass
from threading import RLock
from typing import Dict, FrozenSet, Optional, Protocol, Tuple

import httpx

from clinic_access.core.config import get_settings

# (user_id, policy store epoch, policy snapshot version)
PermissionCacheKey = Tuple[str, str, int]


class PermissionCache(Protocol):
    """Contract for caching resolved permission sets per snapshot version."""

    def get(self, key: PermissionCacheKey) -> Optional[FrozenSet[str]]:
        ...

    def set(self, key: PermissionCacheKey, value: FrozenSet[str]) -> None:
        ...

    def evict_before(self, epoch: str, version: int) -> None:
        ...

    def invalidate(self) -> None:
        ...


@dataclass
class InMemoryPermissionCache(PermissionCache):
    """Thread-safe in-memory cache; entries for superseded snapshots are evicted eagerly."""

    def __post_init__(self) -> None:
        self._store: Dict[PermissionCacheKey, FrozenSet[str]] = {}
        self._lock = RLock()

    def get(self, key: PermissionCacheKey) -> Optional[FrozenSet[str]]:
        with self._lock:
            return self._store.get(key)

    def set(self, key: PermissionCacheKey, value: FrozenSet[str]) -> None:
        with self._lock:
            self._store[key] = value

    def evict_before(self, epoch: str, version: int) -> None:
        with self._lock:
            stale = [key for key in self._store if key[1] != epoch or key[2] < version]
            for key in stale:
                del self._store[key]

    def invalidate(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)


class RedisPermissionCache(PermissionCache):
    """Redis-backed cache using the Upstash REST API.

    The store epoch and snapshot version are part of every key, so stale
    entries are never read after a policy swap or by another process; they
    simply expire with the configured TTL.
    """

    def __init__(self, *, url: str, token: str, prefix: str, ttl_seconds: int) -> None:
        self._client = httpx.Client(
            base_url=url.rstrip("/"),
            headers={"Authorization": f"Bearer {token}"},
            timeout=5.0,
        )
        self._ttl_ms = max(ttl_seconds, 1) * 1000
        self._prefix = prefix

    def get(self, key: PermissionCacheKey) -> Optional[FrozenSet[str]]:
        result = self._execute("GET", self._perm_key(key))
        if result is None:
            return None
        return frozenset(json.loads(str(result)))

    def set(self, key: PermissionCacheKey, value: FrozenSet[str]) -> None:
        self._execute("SET", self._perm_key(key), json.dumps(sorted(value)), "PX", str(self._ttl_ms))

    def evict_before(self, epoch: str, version: int) -> None:
        # Keys embed the epoch and version; superseded entries are unreachable and age out.
        return None

    def invalidate(self) -> None:
        cursor = "0"
        while True:
            result = self._execute("SCAN", cursor, "MATCH", f"{self._prefix}:perm:*", "COUNT", "500")
            if not isinstance(result, list) or len(result) != 2:
                return
            cursor, keys = str(result[0]), list(result[1] or [])
            if keys:
                self._execute("DEL", *keys)
            if cursor == "0":
                return

    def _perm_key(self, key: PermissionCacheKey) -> str:
        user_id, epoch, version = key
        return f"{self._prefix}:perm:{epoch}:v{version}:{user_id}"

    def _execute(self, *command: str) -> Optional[object]:
        response = self._client.post("/", json=list(command))
        response.raise_for_status()
        payload = response.json()
        return payload.get("result")


_shared_cache: Optional[PermissionCache] = None


def get_permission_cache() -> PermissionCache:
    """Return the process-wide permission cache instance."""

    global _shared_cache
    if _shared_cache is not None:
        return _shared_cache

    settings = get_settings()
    redis_url = settings.redis_url
    redis_token = settings.redis_token

    if redis_url and redis_token:
        _shared_cache = RedisPermissionCache(
            url=redis_url,
            token=redis_token,
            prefix=settings.redis_cache_prefix,
            ttl_seconds=settings.redis_cache_ttl,
        )
    else:
        _shared_cache = InMemoryPermissionCache()

    return _shared_cache


def set_permission_cache(cache: Optional[PermissionCache]) -> None:
    """Override the process-wide cache (tests and embedded deployments)."""

    global _shared_cache
    _shared_cache = cache
