"""Bounded LRU cache of file contents."""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from typing import Optional


class SourceCache:
    """LRU keyed by normalized path.

    Reads and writes go through an asyncio lock so that concurrent
    resolutions never observe a half-applied eviction.
    """

    def __init__(self, capacity: int = 200) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._entries: OrderedDict[str, str] = OrderedDict()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def keys(self) -> list[str]:
        """Keys from least to most recently used."""
        return list(self._entries.keys())

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            if key not in self._entries:
                return None
            self._entries.move_to_end(key)
            return self._entries[key]

    async def put(self, key: str, value: str) -> None:
        async with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                self._entries[key] = value
                return
            if len(self._entries) >= self.capacity:
                self._entries.popitem(last=False)
            self._entries[key] = value

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()
