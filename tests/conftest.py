from __future__ import annotations

import asyncio
import math
from pathlib import Path
from typing import Callable
from urllib.parse import parse_qs, urlparse

import pytest

from catalog_crawler.config.models import (
    CatalogConfig,
    CrawlConfig,
    DelayConfig,
    GapConfig,
    SelectorConfig,
)
from catalog_crawler.crawler.engines import CatalogPageParser
from catalog_crawler.crawler.errors import FetchNavigationError, FetchTimeoutError
from catalog_crawler.crawler.models import ProductRecord, RawProductRecord
from catalog_crawler.state.storage import ProductStore

BASE_URL = "https://catalog.example/products/?p_type%5B%5D=14&p_type%5B%5D=15"


class FakeCatalogSite:
    """Каталог, где новые товары появляются на первой странице и сдвигают остальные."""

    def __init__(self, total_products: int, page_size: int = 12):
        self.page_size = page_size
        self.total_products = total_products

    def publish(self, count: int) -> None:
        self.total_products += count

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_products / self.page_size)

    def positions(self, site_page: int) -> list[int]:
        """Позиции товаров страницы сайта от старых к новым."""
        upper = self.total_products - (site_page - 1) * self.page_size
        lower = max(0, upper - self.page_size)
        return list(range(lower, max(lower, upper)))

    def render(self, site_page: int) -> str:
        articles = "".join(
            f"""
            <article>
              <a href="/products/p-{position}/">card</a>
              <p class="entry-company notranslate">Maker {position}</p>
              <h3 class="entry-title">Model {position}</h3>
              <span class="entry-cert-id">Certificate ID: CSA{position:05d}</span>
            </article>
            """
            for position in reversed(self.positions(site_page))
        )
        numbers = sorted({1, min(2, self.total_pages), self.total_pages}) if self.total_pages else []
        pagination = "".join(f"<a><span>{number}</span></a>" for number in numbers)
        return (
            "<html><body>"
            f'<div class="pagination-wrapper"><nav><div>{pagination}</div></nav></div>'
            f'<div class="post-feed">{articles}</div>'
            "</body></html>"
        )


def product_url(position: int) -> str:
    return f"https://catalog.example/products/p-{position}/"


class FakeCatalogEngine:
    """Движок поверх ``FakeCatalogSite`` со сценариями сбоев по номеру страницы."""

    def __init__(self, site: FakeCatalogSite, scenarios: dict[int, list[str]] | None = None):
        self.site = site
        self.scenarios = {page: list(steps) for page, steps in (scenarios or {}).items()}
        self.parser = CatalogPageParser(SelectorConfig())
        self.calls: list[int] = []
        self.html_calls: list[int] = []
        self.opened = False
        self.closed = False
        self.on_fetch: Callable[[int], None] | None = None

    async def open(self) -> None:
        self.opened = True

    async def close(self) -> None:
        self.closed = True

    async def fetch_html(self, url: str, timeout: float) -> str:
        page = _page_number(url)
        self.html_calls.append(page)
        return self.site.render(page)

    async def fetch_records(self, url: str, timeout: float) -> list[RawProductRecord]:
        page = _page_number(url)
        self.calls.append(page)
        if self.on_fetch is not None:
            self.on_fetch(page)
        steps = self.scenarios.get(page)
        step = steps.pop(0) if steps else "ok"
        if step == "timeout":
            raise FetchTimeoutError(f"timeout {url}")
        if step == "navigation":
            raise FetchNavigationError(f"navigation {url}")
        if step == "hang":
            await asyncio.sleep(3600)
        records = self.parser.parse_records(self.site.render(page), url)
        if step == "partial":
            records = records[:-1]
        return records


def _page_number(url: str) -> int:
    return int(parse_qs(urlparse(url).query)["paged"][0])


def make_record(position: int, page_size: int = 12) -> ProductRecord:
    return ProductRecord(
        url=product_url(position),
        page_id=position // page_size,
        index_in_page=position % page_size,
        manufacturer=f"Maker {position}",
        model=f"Model {position}",
        certificate_id=f"CSA{position:05d}",
    )


@pytest.fixture
def catalog_config() -> CatalogConfig:
    return CatalogConfig(base_url=BASE_URL, page_size=12)


@pytest.fixture
def crawl_config() -> CrawlConfig:
    return CrawlConfig(
        page_range_limit=3,
        initial_concurrency=4,
        retry_concurrency=2,
        retry_cycles=2,
        page_timeout_sec=2.0,
        batch_delay_sec=0.0,
        request_delay=DelayConfig(min_sec=0.0, max_sec=0.0),
    )


@pytest.fixture
def gap_config() -> GapConfig:
    return GapConfig(max_concurrent_pages=2, delay_between_batches_sec=0.0)


@pytest.fixture
def store(tmp_path: Path):
    product_store = ProductStore(tmp_path / "catalog.db")
    yield product_store
    product_store.close()


@pytest.fixture
def site_factory() -> Callable[..., FakeCatalogSite]:
    return FakeCatalogSite


@pytest.fixture
def engine_factory() -> Callable[..., FakeCatalogEngine]:
    return FakeCatalogEngine


@pytest.fixture
def record_factory() -> Callable[..., ProductRecord]:
    return make_record


@pytest.fixture
def url_for() -> Callable[[int], str]:
    return product_url
