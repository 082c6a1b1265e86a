from typing import Any, Callable, Dict, List, Optional
import asyncio
import copy
from datetime import datetime, timedelta

from deskmate.domain.models.agent_state import utcnow


class SessionCache:
    """In-process cache of session records with last-access tracking"""

    def __init__(self, enabled: bool = True, clock: Callable[[], datetime] = utcnow):
        self.enabled = enabled
        self.clock = clock
        self.cache: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def set(self, key: str, value: Any) -> None:
        """Store a copy of value under key"""

        if not self.enabled:
            return

        async with self._lock:
            self.cache[key] = {
                "value": copy.deepcopy(value),
                "accessed_at": self.clock()
            }

    async def get(self, key: str) -> Optional[Any]:
        """Copy of the cached value, refreshing its last access"""

        if not self.enabled:
            return None

        async with self._lock:
            entry = self.cache.get(key)
            if entry is None:
                return None

            entry["accessed_at"] = self.clock()
            return copy.deepcopy(entry["value"])

    async def delete(self, key: str) -> bool:
        """Delete a key from cache"""

        async with self._lock:
            return self.cache.pop(key, None) is not None

    async def evict_idle(self, max_idle: timedelta) -> List[str]:
        """Drop entries not accessed within max_idle and return their keys"""

        async with self._lock:
            cutoff = self.clock() - max_idle
            idle_keys = [
                key for key, entry in self.cache.items()
                if entry["accessed_at"] < cutoff
            ]

            for key in idle_keys:
                del self.cache[key]

            return idle_keys

    async def clear(self) -> None:
        async with self._lock:
            self.cache.clear()

    async def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics"""

        async with self._lock:
            return {
                "enabled": self.enabled,
                "total_keys": len(self.cache)
            }
