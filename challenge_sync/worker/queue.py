"""In-process event transport feeding the worker loop."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Protocol


class EventQueue(Protocol):
    """Transport the worker consumes deliveries (scheduled event id plus envelope) from."""

    async def put(self, delivery: Dict[str, Any]) -> None: ...

    async def get(self) -> Dict[str, Any]: ...

    def empty(self) -> bool: ...


class AsyncioEventQueue:
    """EventQueue backed by an unbounded ``asyncio.Queue``."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()

    async def put(self, delivery: Dict[str, Any]) -> None:
        await self._queue.put(delivery)

    async def get(self) -> Dict[str, Any]:
        return await self._queue.get()

    def empty(self) -> bool:
        return self._queue.empty()

    def qsize(self) -> int:
        return self._queue.qsize()
