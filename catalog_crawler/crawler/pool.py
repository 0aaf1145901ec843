from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Hashable, Iterable, TypeVar

from catalog_crawler.crawler.errors import CrawlCancelledError

T = TypeVar("T")
K = TypeVar("K", bound=Hashable)


class BoundedWorkerPool:
    """Запускает корутины по списку ключей, не больше ``concurrency`` одновременно."""

    def __init__(self, concurrency: int, cancel_event: asyncio.Event | None = None):
        if concurrency <= 0:
            raise ValueError("concurrency должен быть положительным")
        self.concurrency = concurrency
        self.cancel_event = cancel_event

    async def run(
        self,
        keys: Iterable[K],
        worker: Callable[[K], Awaitable[T]],
    ) -> dict[K, T | BaseException]:
        """Результаты (или исключения) воркеров по ключам, в порядке ``keys``."""
        semaphore = asyncio.Semaphore(self.concurrency)
        ordered = list(keys)

        async def _guarded(key: K) -> T:
            async with semaphore:
                if self.cancel_event is not None and self.cancel_event.is_set():
                    raise CrawlCancelledError("остановлено до запуска")
                return await worker(key)

        results = await asyncio.gather(
            *(_guarded(key) for key in ordered),
            return_exceptions=True,
        )
        return dict(zip(ordered, results))


async def race_with_cancel(
    awaitable: Awaitable[T],
    cancel_event: asyncio.Event | None,
    timeout: float,
) -> T:
    """Ждёт операцию, пока не истёк таймаут и не выставлен сигнал остановки."""
    if cancel_event is None:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    if cancel_event.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise CrawlCancelledError("остановлено до запуска")
    operation = asyncio.ensure_future(awaitable)
    stopper = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait(
            {operation, stopper},
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
    except asyncio.CancelledError:
        operation.cancel()
        raise
    finally:
        stopper.cancel()
    if operation in done:
        return operation.result()
    operation.cancel()
    await asyncio.gather(operation, return_exceptions=True)
    if stopper in done:
        raise CrawlCancelledError("операция прервана сигналом остановки")
    raise asyncio.TimeoutError(f"операция не завершилась за {timeout:.1f} с")


async def sleep_unless_cancelled(delay: float, cancel_event: asyncio.Event | None) -> bool:
    """Пауза, прерываемая сигналом остановки. Возвращает True, если остановка запрошена."""
    if cancel_event is None:
        if delay > 0:
            await asyncio.sleep(delay)
        return False
    if delay <= 0:
        return cancel_event.is_set()
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return False
    return True
