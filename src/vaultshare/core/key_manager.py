"""
Key cache for share and item encryption keys.

Lookups are pull-based: nothing refreshes in the background. A sync event that
observes a rotation bump calls ``mark_stale`` and the next lookup refetches.
A bump that lands while a fetch is in flight keeps the fetched key stale.
Concurrent cold lookups of the same key share a single in-flight fetch so one
invite operation never sees two different rotations.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Tuple

from .exceptions import KeysNotFoundError
from .interfaces import KeyRepository
from .models import EncryptionKey

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, Optional[str]]
RotationKey = Tuple[str, Optional[str], int]


@dataclass
class _CacheEntry:
    key: EncryptionKey
    stale: bool = False


class KeyManager:
    """Cache of the highest-known key per (share_id, item_id)."""

    def __init__(self, repository: KeyRepository):
        self.repository = repository
        self._latest: Dict[CacheKey, _CacheEntry] = {}
        self._by_rotation: Dict[RotationKey, EncryptionKey] = {}
        self._pending: Dict[tuple, asyncio.Task] = {}
        # highest rotation reported by mark_stale that no fetch has caught up with
        self._observed: Dict[CacheKey, int] = {}
        # bumped on every mark_stale so an in-flight fetch can tell it was overtaken
        self._generation: Dict[CacheKey, int] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_latest_key(self, share_id: str, item_id: Optional[str] = None) -> EncryptionKey:
        """Return the latest key of a share, or of an item when ``item_id`` is set.

        Raises KeysNotFoundError if the repository has no key for it.
        """
        cache_key = (share_id, item_id)
        async with self._lock:
            entry = self._latest.get(cache_key)
            if entry is not None and not entry.stale:
                return entry.key
        return await self._single_flight(("latest", share_id, item_id), lambda: self._fetch_latest(share_id, item_id))

    async def get_latest_share_key(self, share_id: str) -> EncryptionKey:
        return await self.get_latest_key(share_id)

    async def get_latest_item_key(self, share_id: str, item_id: str) -> EncryptionKey:
        return await self.get_latest_key(share_id, item_id)

    async def get_key_at_rotation(self, share_id: str, rotation: int, item_id: Optional[str] = None) -> EncryptionKey:
        """Return the key of one specific rotation.

        Keys of past rotations never change, so these entries are never stale.
        """
        rotation_key = (share_id, item_id, rotation)
        async with self._lock:
            cached = self._by_rotation.get(rotation_key)
            if cached is not None:
                return cached
        return await self._single_flight(
            ("rotation", share_id, item_id, rotation),
            lambda: self._fetch_rotation(share_id, rotation, item_id),
        )

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    async def mark_stale(self, share_id: str, item_id: Optional[str] = None, rotation: Optional[int] = None) -> bool:
        """Record that the latest key of a share or item has moved on.

        Returns True if the bump was recorded. A ``rotation`` at or below the
        highest one already known is not a bump and is ignored. Without a
        ``rotation`` the call only applies to a cached entry or an in-flight
        fetch. A fetch that completes below a recorded rotation, or that was
        already waiting on the repository when the bump arrived, is cached stale.
        """
        cache_key = (share_id, item_id)
        async with self._lock:
            entry = self._latest.get(cache_key)
            if rotation is not None:
                known = self._observed.get(cache_key, -1)
                if entry is not None:
                    known = max(known, entry.key.rotation)
                if rotation <= known:
                    return False
                self._observed[cache_key] = rotation
            elif entry is None and ("latest", share_id, item_id) not in self._pending:
                return False
            self._generation[cache_key] = self._generation.get(cache_key, 0) + 1
            if entry is not None:
                entry.stale = True
            logger.debug("Marked key of share %s item %s stale (rotation %s)", share_id, item_id, rotation)
            return True

    async def is_stale(self, share_id: str, item_id: Optional[str] = None) -> bool:
        async with self._lock:
            entry = self._latest.get((share_id, item_id))
            return entry is not None and entry.stale

    async def invalidate_all(self) -> None:
        async with self._lock:
            self._latest.clear()
            self._by_rotation.clear()
            self._observed.clear()
            self._generation.clear()
        logger.info("Cleared all cached share keys")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _single_flight(self, flight_key: tuple, fetch: Callable[[], Awaitable[EncryptionKey]]) -> EncryptionKey:
        async with self._lock:
            task = self._pending.get(flight_key)
            if task is None:
                task = asyncio.ensure_future(fetch())
                self._pending[flight_key] = task
                task.add_done_callback(lambda _t: self._pending.pop(flight_key, None))
        # shield: one caller cancelling must not cancel the fetch the others wait on
        return await asyncio.shield(task)

    async def _fetch_latest(self, share_id: str, item_id: Optional[str]) -> EncryptionKey:
        cache_key = (share_id, item_id)
        async with self._lock:
            generation = self._generation.get(cache_key, 0)
        logger.debug("Fetching latest key for share %s item %s", share_id, item_id)
        key = await self.repository.fetch_latest_key(share_id, item_id)
        if key is None:
            raise KeysNotFoundError(share_id, item_id)

        async with self._lock:
            current = self._latest.get(cache_key)
            if current is not None and current.key.rotation > key.rotation:
                # repository answered with an older rotation than one already seen
                logger.warning(
                    "Ignoring key rotation %d for share %s, already know rotation %d",
                    key.rotation,
                    share_id,
                    current.key.rotation,
                )
                key = current.key
            observed = self._observed.get(cache_key)
            stale = self._generation.get(cache_key, 0) != generation
            if observed is not None:
                if key.rotation < observed:
                    stale = True
                else:
                    del self._observed[cache_key]
            self._latest[cache_key] = _CacheEntry(key, stale)
            self._by_rotation[(share_id, item_id, key.rotation)] = key
        if stale:
            logger.warning(
                "Cached key rotation %d for share %s item %s is already stale (seen rotation %s)",
                key.rotation,
                share_id,
                item_id,
                observed,
            )
        else:
            logger.info("Cached key rotation %d for share %s item %s", key.rotation, share_id, item_id)
        return key

    async def _fetch_rotation(self, share_id: str, rotation: int, item_id: Optional[str]) -> EncryptionKey:
        logger.debug("Fetching key rotation %d for share %s item %s", rotation, share_id, item_id)
        key = await self.repository.fetch_key_at_rotation(share_id, rotation, item_id)
        if key is None or key.rotation != rotation:
            raise KeysNotFoundError(share_id, item_id)
        async with self._lock:
            self._by_rotation[(share_id, item_id, rotation)] = key
        return key
