from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

from catalog_crawler.config.models import CatalogConfig
from catalog_crawler.crawler.engines import CatalogEngine, CatalogPageParser
from catalog_crawler.crawler.errors import RangePreparationError
from catalog_crawler.crawler.models import SiteMetadata
from catalog_crawler.crawler.utils import build_page_url
from catalog_crawler.logger import get_logger

logger = get_logger(__name__)

MetadataFetcher = Callable[[], Awaitable[SiteMetadata]]


class SiteMetadataCache:
    """TTL-кэш метаданных сайта. Один экземпляр на сборщик, без глобального состояния."""

    def __init__(self, ttl_sec: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_sec = ttl_sec
        self._clock = clock
        self._value: SiteMetadata | None = None
        self._stored_at = 0.0
        self._lock = asyncio.Lock()

    def has_valid_cache(self) -> bool:
        if self._value is None:
            return False
        return self._clock() - self._stored_at < self.ttl_sec

    def peek(self) -> SiteMetadata | None:
        return self._value if self.has_valid_cache() else None

    def invalidate(self) -> None:
        self._value = None
        self._stored_at = 0.0

    async def get_or_fetch(self, fetcher: MetadataFetcher, *, force: bool = False) -> SiteMetadata:
        async with self._lock:
            if not force and self.has_valid_cache():
                return self._value  # type: ignore[return-value]
            value = await fetcher()
            self._value = value
            self._stored_at = self._clock()
            return value


class SiteMetadataProbe:
    """Определяет число страниц и заполненность самой старой страницы."""

    def __init__(self, engine: CatalogEngine, catalog: CatalogConfig, timeout_sec: float):
        self.engine = engine
        self.catalog = catalog
        self.timeout_sec = timeout_sec
        self.parser = CatalogPageParser(catalog.selectors)

    async def probe(self) -> SiteMetadata:
        first_url = build_page_url(self.catalog.base_url, self.catalog.page_param, 1)
        first_html = await self.engine.fetch_html(first_url, self.timeout_sec)
        total_pages = self.parser.total_pages(first_html)
        if total_pages == 0:
            logger.warning("Каталог пуст", extra={"url": first_url})
            return SiteMetadata(total_site_pages=0, last_page_product_count=0)
        if total_pages == 1:
            last_html = first_html
        else:
            last_url = build_page_url(self.catalog.base_url, self.catalog.page_param, total_pages)
            last_html = await self.engine.fetch_html(last_url, self.timeout_sec)
        last_count = self.parser.count_items(last_html)
        if not 1 <= last_count <= self.catalog.page_size:
            raise RangePreparationError(
                f"На последней странице {total_pages} найдено {last_count} карточек, "
                f"ожидалось от 1 до {self.catalog.page_size}"
            )
        metadata = SiteMetadata(total_site_pages=total_pages, last_page_product_count=last_count)
        logger.info(
            "Метаданные сайта получены",
            extra={"total_pages": total_pages, "last_page_count": last_count},
        )
        return metadata
