"""Effective permission resolution."""

from __future__ import annotations

import logging
from typing import FrozenSet, Optional

import httpx

from clinic_access.policy.snapshot import PolicySnapshot
from clinic_access.services.cache import PermissionCache, PermissionCacheKey, get_permission_cache

LOGGER = logging.getLogger("clinic_access.policy.resolver")


def resolve_effective_permissions(user_id: str, snapshot: PolicySnapshot) -> FrozenSet[str]:
    """Union of the permissions of the user's active roles and direct grants."""

    assignment = snapshot.assignment_for(user_id)
    codes = set(assignment.direct_permission_codes)
    for role_id in assignment.role_ids:
        role = snapshot.roles.get(role_id)
        if role is None or not role.is_active:
            continue
        codes.update(role.permission_codes)
    return frozenset(codes)


class PermissionResolver:
    """Resolves effective permissions, memoized per (user, store epoch, snapshot version)."""

    def __init__(self, cache: Optional[PermissionCache] = None) -> None:
        self._cache = cache if cache is not None else get_permission_cache()

    @property
    def cache(self) -> PermissionCache:
        return self._cache

    def resolve(self, user_id: str, snapshot: PolicySnapshot) -> FrozenSet[str]:
        key: PermissionCacheKey = (user_id, snapshot.epoch, snapshot.version)
        try:
            cached = self._cache.get(key)
        except httpx.HTTPError:
            LOGGER.warning("permission_cache_unavailable", extra={"user_id": user_id})
            return resolve_effective_permissions(user_id, snapshot)
        if cached is not None:
            return cached

        permissions = resolve_effective_permissions(user_id, snapshot)
        try:
            self._cache.set(key, permissions)
        except httpx.HTTPError:
            LOGGER.warning("permission_cache_unavailable", extra={"user_id": user_id})
        return permissions

    def on_snapshot_swapped(self, snapshot: PolicySnapshot) -> None:
        """Store listener: drop entries computed against older snapshots."""

        try:
            self._cache.evict_before(snapshot.epoch, snapshot.version)
        except httpx.HTTPError:
            LOGGER.warning("permission_cache_evict_failed", extra={"policy_version": snapshot.version})
