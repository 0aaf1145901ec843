from __future__ import annotations

from typing import Any, Protocol

import httpx
from bs4 import BeautifulSoup, Tag
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from catalog_crawler.config.models import NetworkConfig, SelectorConfig
from catalog_crawler.crawler.errors import (
    EngineStartupError,
    FetchNavigationError,
    FetchTimeoutError,
    MarkupError,
)
from catalog_crawler.crawler.models import RawProductRecord
from catalog_crawler.crawler.utils import normalize_url, pick_user_agent
from catalog_crawler.logger import get_logger
from catalog_crawler.monitoring import build_error_event

logger = get_logger(__name__)


class CatalogEngine(Protocol):
    async def open(self) -> None: ...

    async def fetch_html(self, url: str, timeout: float) -> str: ...

    async def fetch_records(self, url: str, timeout: float) -> list[RawProductRecord]: ...

    async def close(self) -> None: ...


class CatalogPageParser:
    """Разбор HTML страницы списка: карточки, пагинация, число карточек."""

    def __init__(self, selectors: SelectorConfig):
        self.selectors = selectors

    def parse_records(self, html: str, page_url: str) -> list[RawProductRecord]:
        items = self._ordered_items(html)
        records: list[RawProductRecord] = []
        for index, item in enumerate(items):
            link = item.select_one(self.selectors.link_selector)
            href = link.get("href") if link else None
            if not href:
                logger.debug(
                    "Карточка без ссылки пропущена",
                    extra={"url": page_url, "index": index},
                )
                continue
            records.append(
                RawProductRecord(
                    url=normalize_url(str(href), page_url),
                    site_index_in_page=index,
                    manufacturer=self._text(item, self.selectors.manufacturer_selector),
                    model=self._text(item, self.selectors.model_selector),
                    certificate_id=self._certificate(item),
                )
            )
        if items and not records:
            raise MarkupError(
                f"На странице {page_url} найдено {len(items)} карточек, но ни одной ссылки"
            )
        return records

    def total_pages(self, html: str) -> int:
        """Максимальный номер в блоке пагинации; 1, если пагинации нет, 0 для пустого каталога."""
        soup = BeautifulSoup(html, "lxml")
        numbers = []
        for node in soup.select(self.selectors.pagination_selector):
            text = node.get_text(strip=True).replace(",", "")
            if text.isdigit():
                numbers.append(int(text))
        if numbers:
            return max(numbers)
        return 1 if soup.select(self.selectors.item_selector) else 0

    def count_items(self, html: str) -> int:
        soup = BeautifulSoup(html, "lxml")
        return len(soup.select(self.selectors.item_selector))

    def _ordered_items(self, html: str) -> list[Tag]:
        soup = BeautifulSoup(html, "lxml")
        items = soup.select(self.selectors.item_selector)
        if self.selectors.newest_first:
            items.reverse()
        return items

    def _certificate(self, item: Tag) -> str | None:
        value = self._text(item, self.selectors.certificate_selector)
        if value is None:
            return None
        prefix = self.selectors.certificate_prefix
        if prefix and value.startswith(prefix):
            value = value[len(prefix):].strip()
        return value or None

    @staticmethod
    def _text(item: Tag, selector: str) -> str | None:
        node = item.select_one(selector)
        if node is None:
            return None
        text = node.get_text(" ", strip=True)
        return text or None


class HttpEngine:
    """Загрузка страниц списка через httpx для серверного рендеринга."""

    def __init__(
        self,
        network: NetworkConfig,
        selectors: SelectorConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.network = network
        self.parser = CatalogPageParser(selectors)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def open(self) -> None:
        if self._client is not None:
            return
        headers = {}
        if self.network.accept_language:
            headers["Accept-Language"] = self.network.accept_language
        self._client = httpx.AsyncClient(
            timeout=self.network.request_timeout_sec,
            follow_redirects=True,
            headers=headers,
            transport=self._transport,
        )

    async def fetch_html(self, url: str, timeout: float) -> str:
        if self._client is None:
            raise EngineStartupError("HttpEngine не открыт: вызовите open()")
        headers = {"User-Agent": pick_user_agent(self.network)}
        try:
            response = await self._client.get(url, headers=headers, timeout=timeout)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise FetchTimeoutError(f"Таймаут загрузки {url}") from exc
        except httpx.HTTPError as exc:
            event = build_error_event(
                error_type=type(exc).__name__,
                error_source="catalog_crawler.crawler.engines.HttpEngine",
                url=url,
                action_required=["retry", "add_delay"],
                metadata={"error": str(exc)},
            )
            logger.warning("Ошибка HTTP при загрузке страницы", extra={"error_event": event})
            raise FetchNavigationError(f"Не удалось загрузить {url}: {exc}") from exc
        return response.text

    async def fetch_records(self, url: str, timeout: float) -> list[RawProductRecord]:
        html = await self.fetch_html(url, timeout)
        return self.parser.parse_records(html, url)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class BrowserEngine:
    """Headless-браузер на базе Playwright (async API) для динамических каталогов."""

    def __init__(self, network: NetworkConfig, selectors: SelectorConfig):
        self.network = network
        self.selectors = selectors
        self.parser = CatalogPageParser(selectors)
        self._playwright: Any = None
        self._browser: Any = None
        self._context: Any = None

    async def open(self) -> None:
        if self._context is not None:
            return
        slow_mo_ms = int(self.network.browser_slow_mo_ms or 0)
        if not self.network.browser_headless:
            logger.warning("Playwright запущен в визуальном режиме (headless=False)")
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.network.browser_headless,
                slow_mo=slow_mo_ms or None,
            )
            extra_headers = {}
            if self.network.accept_language:
                extra_headers["Accept-Language"] = self.network.accept_language
            self._context = await self._browser.new_context(
                user_agent=pick_user_agent(self.network),
                extra_http_headers=extra_headers or None,
            )
        except PlaywrightError as exc:
            await self.close()
            raise EngineStartupError(
                "Не удалось запустить Playwright. "
                "Убедитесь, что выполнена команда `playwright install chromium`."
            ) from exc
        logger.info(
            "Браузер Playwright запущен",
            extra={"headless": self.network.browser_headless, "slow_mo_ms": slow_mo_ms},
        )

    async def fetch_html(self, url: str, timeout: float) -> str:
        if self._context is None:
            raise EngineStartupError("BrowserEngine не открыт: вызовите open()")
        timeout_ms = int(timeout * 1000)
        page = await self._context.new_page()
        try:
            await page.goto(url, timeout=timeout_ms, wait_until="domcontentloaded")
            try:
                await page.wait_for_selector(self.selectors.item_selector, timeout=timeout_ms)
            except PlaywrightTimeoutError:
                # Пустая страница каталога допустима, решение принимает вызывающая сторона.
                logger.debug("Карточки не появились на странице", extra={"url": url})
            return await page.content()
        except PlaywrightTimeoutError as exc:
            raise FetchTimeoutError(f"Таймаут загрузки {url}") from exc
        except PlaywrightError as exc:
            raise FetchNavigationError(f"Ошибка навигации {url}: {exc}") from exc
        finally:
            await page.close()

    async def fetch_records(self, url: str, timeout: float) -> list[RawProductRecord]:
        html = await self.fetch_html(url, timeout)
        return self.parser.parse_records(html, url)

    async def close(self) -> None:
        if self._context is not None:
            await self._context.close()
            self._context = None
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None


def create_engine(
    engine_type: str,
    network: NetworkConfig,
    selectors: SelectorConfig,
) -> CatalogEngine:
    if engine_type == "browser":
        return BrowserEngine(network, selectors)
    return HttpEngine(network, selectors)
