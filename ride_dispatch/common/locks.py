# ride_dispatch/common/locks.py
"""
Блокировки по ключу для сериализации изменений одной сущности.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator


class KeyedLock:
    """
    Набор asyncio.Lock, по одному на ключ (id водителя, бронирования, заявки).
    Разные ключи не блокируют друг друга.
    """

    def __init__(self) -> None:
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks[key]
        async with lock:
            yield

    def discard(self, key: str) -> None:
        """Удаляет блокировку, если её никто не держит."""
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            del self._locks[key]
