from __future__ import annotations

import asyncio
from typing import AsyncIterator, Union

from catalog_crawler.crawler.models import ProgressSnapshot, TaskStatusEvent

ProgressItem = Union[ProgressSnapshot, TaskStatusEvent]

_CLOSED = object()


class ProgressChannel:
    """Очередь снимков прогресса и событий задач.

    Сборщик только публикует, вызывающая сторона сама решает, когда читать:
    ``drain()`` забирает накопленное без ожидания, ``stream()`` читает до ``close()``.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def publish(self, item: ProgressItem) -> None:
        if self._closed:
            return
        self._queue.put_nowait(item)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed

    def drain(self) -> list[ProgressItem]:
        items: list[ProgressItem] = []
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return items
            if item is _CLOSED:
                # Маркер закрытия остаётся для stream().
                self._queue.put_nowait(_CLOSED)
                return items
            items.append(item)

    async def stream(self) -> AsyncIterator[ProgressItem]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item
