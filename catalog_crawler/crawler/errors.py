from __future__ import annotations

import asyncio
from typing import Any

from catalog_crawler.monitoring import build_error_event


class RangePreparationError(RuntimeError):
    """Не удалось получить метаданные сайта или вычислить диапазон обхода."""


class EngineError(RuntimeError):
    """Сбой движка загрузки страниц (без привязки к номеру страницы)."""


class FetchTimeoutError(EngineError):
    pass


class FetchNavigationError(EngineError):
    pass


class EngineStartupError(EngineError):
    pass


class MarkupError(EngineError):
    """Разметка страницы не соответствует ожидаемым селекторам."""


class CrawlCancelledError(Exception):
    """Операция прервана сигналом остановки."""


class PageOperationError(Exception):
    """Базовая ошибка обработки одной страницы списка."""

    kind = "Generic"
    action_required: tuple[str, ...] = ("retry",)

    def __init__(self, message: str, page_number: int, attempt: int, url: str | None = None):
        super().__init__(message)
        self.message = message
        self.page_number = page_number
        self.attempt = attempt
        self.url = url

    def __str__(self) -> str:
        return f"[{self.kind}] page={self.page_number} attempt={self.attempt}: {self.message}"

    def to_event(self) -> dict[str, Any]:
        return build_error_event(
            error_type=self.kind,
            error_source="catalog_crawler.crawler.collector",
            url=self.url,
            retry_index=self.attempt,
            action_required=list(self.action_required),
            metadata={"page_number": self.page_number, "message": self.message},
        )


class PageTimeoutError(PageOperationError):
    kind = "Timeout"
    action_required = ("retry", "increase_timeout")


class PageAbortedError(PageOperationError):
    kind = "Abort"
    action_required = ()


class PageNavigationError(PageOperationError):
    kind = "Navigation"
    action_required = ("retry", "add_delay")


class PageExtractionError(PageOperationError):
    kind = "Extraction"
    action_required = ("check_selectors",)


class PageInitializationError(PageOperationError):
    kind = "Initialization"
    action_required = ("restart_engine",)


def classify_page_error(
    exc: BaseException, page_number: int, attempt: int, url: str | None = None
) -> PageOperationError:
    """Приводит произвольное исключение воркера к таксономии ошибок страниц."""
    if isinstance(exc, PageOperationError):
        return exc
    if isinstance(exc, MarkupError):
        return PageExtractionError(str(exc), page_number, attempt, url)
    if isinstance(exc, FetchNavigationError):
        return PageNavigationError(str(exc), page_number, attempt, url)
    if isinstance(exc, EngineStartupError):
        return PageInitializationError(str(exc), page_number, attempt, url)
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, FetchTimeoutError)):
        return PageTimeoutError(
            str(exc) or "превышено время ожидания страницы", page_number, attempt, url
        )
    if isinstance(exc, (asyncio.CancelledError, CrawlCancelledError)):
        return PageAbortedError("обход остановлен", page_number, attempt, url)
    return PageOperationError(f"{type(exc).__name__}: {exc}", page_number, attempt, url)
