import logging
import time
from typing import Callable, Dict, Iterator, Optional, Tuple
from .models import CacheEntry

logger = logging.getLogger(__name__)

class CacheStore:
    """Storage backend for the resolution cache. Subclass for durable storage."""

    def get(self, video_id: str) -> Optional[CacheEntry]:
        raise NotImplementedError

    def set(self, video_id: str, entry: CacheEntry) -> None:
        raise NotImplementedError

    def delete(self, video_id: str) -> None:
        raise NotImplementedError

    def items(self) -> Iterator[Tuple[str, CacheEntry]]:
        raise NotImplementedError

    def __len__(self) -> int:
        raise NotImplementedError

class MemoryCacheStore(CacheStore):
    def __init__(self):
        self._entries: Dict[str, CacheEntry] = {}

    def get(self, video_id: str) -> Optional[CacheEntry]:
        return self._entries.get(video_id)

    def set(self, video_id: str, entry: CacheEntry) -> None:
        self._entries[video_id] = entry

    def delete(self, video_id: str) -> None:
        self._entries.pop(video_id, None)

    def items(self) -> Iterator[Tuple[str, CacheEntry]]:
        # Snapshot so callers may delete while iterating
        return iter(list(self._entries.items()))

    def __len__(self) -> int:
        return len(self._entries)

class ResolutionCache:
    """
    Fixed-TTL cache of resolved streams keyed by video id.

    Expiry is lazy: every lookup first drops all entries whose `cache_until`
    has passed. Hits never extend an entry's lifetime.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.time, store: Optional[CacheStore] = None):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.store = store if store is not None else MemoryCacheStore()

    def expires_at(self) -> float:
        return self.clock() + self.ttl_seconds

    def cleanup(self) -> int:
        now = self.clock()
        expired = [video_id for video_id, entry in self.store.items() if entry.cache_until <= now]
        for video_id in expired:
            self.store.delete(video_id)
        if expired:
            logger.debug(f"Evicted {len(expired)} expired cache entries")
        return len(expired)

    def get(self, video_id: str) -> Optional[CacheEntry]:
        self.cleanup()
        return self.store.get(video_id)

    def put(self, video_id: str, entry: CacheEntry):
        self.store.set(video_id, entry)

    def __len__(self) -> int:
        return len(self.store)
