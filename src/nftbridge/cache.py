"""
Listing/metadata cache.

Remembers the last token listing per network and when it was fetched.
A fetch requested within ``debounce`` seconds of the previous one is
answered from the cache unless forced.  Concurrent fetches for the same
network wait on one lock, so a burst of refresh triggers results in a
single round trip.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger("nftbridge.cache")

DEFAULT_DEBOUNCE = 10.0

Loader = Callable[[], Awaitable[List[Any]]]


class ListingCache:
    def __init__(self, debounce: float = DEFAULT_DEBOUNCE,
                 clock: Callable[[], float] = time.monotonic):
        self.debounce = debounce
        self._clock = clock
        # (chain_id, owner) -> (fetched_at, listing)
        self._entries: Dict[Tuple[int, str], Tuple[float, List[Any]]] = {}
        self._locks: Dict[int, asyncio.Lock] = {}

    def _lock_for(self, chain_id: int) -> asyncio.Lock:
        lock = self._locks.get(chain_id)
        if lock is None:
            lock = self._locks[chain_id] = asyncio.Lock()
        return lock

    @staticmethod
    def _key(chain_id: int, owner: str) -> Tuple[int, str]:
        return int(chain_id), owner.lower()

    def get(self, chain_id: int, owner: str) -> Optional[List[Any]]:
        entry = self._entries.get(self._key(chain_id, owner))
        return list(entry[1]) if entry else None

    def last_fetch(self, chain_id: int, owner: str) -> Optional[float]:
        entry = self._entries.get(self._key(chain_id, owner))
        return entry[0] if entry else None

    def is_fresh(self, chain_id: int, owner: str) -> bool:
        fetched = self.last_fetch(chain_id, owner)
        return fetched is not None and self._clock() - fetched < self.debounce

    async def fetch(self, chain_id: int, owner: str, loader: Loader,
                    force: bool = False) -> List[Any]:
        """Return the listing, calling *loader* only when the cache is stale."""
        async with self._lock_for(chain_id):
            key = self._key(chain_id, owner)
            if not force and self.is_fresh(chain_id, owner):
                logger.debug("Skipping fetch for chain %d: within %.0fs debounce",
                             chain_id, self.debounce)
                return list(self._entries[key][1])
            listing = await loader()
            self._entries[key] = (self._clock(), list(listing))
            logger.debug("Fetched %d token(s) on chain %d", len(listing), chain_id)
            return list(listing)

    def invalidate(self, chain_id: Optional[int] = None) -> None:
        """Drop cached listings for *chain_id*, or for every network."""
        if chain_id is None:
            self._entries.clear()
            return
        for key in [k for k in self._entries if k[0] == int(chain_id)]:
            del self._entries[key]
