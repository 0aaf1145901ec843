from __future__ import annotations

import asyncio

import httpx
import pytest

from catalog_crawler.config.models import NetworkConfig, SelectorConfig
from catalog_crawler.crawler.engines import (
    BrowserEngine,
    CatalogPageParser,
    HttpEngine,
    create_engine,
)
from catalog_crawler.crawler.errors import (
    EngineStartupError,
    FetchNavigationError,
    FetchTimeoutError,
    MarkupError,
)

PAGE_URL = "https://catalog.example/products/?paged=3"


def test_parser_reverses_dom_order_and_cleans_fields(site_factory, url_for) -> None:
    site = site_factory(total_products=29)
    parser = CatalogPageParser(SelectorConfig())

    records = parser.parse_records(site.render(3), PAGE_URL)

    assert [record.url for record in records] == [url_for(p) for p in range(5)]
    assert [record.site_index_in_page for record in records] == list(range(5))
    assert records[0].manufacturer == "Maker 0"
    assert records[0].model == "Model 0"
    assert records[0].certificate_id == "CSA00000"


def test_parser_reads_pagination_and_item_count(site_factory) -> None:
    site = site_factory(total_products=113)
    parser = CatalogPageParser(SelectorConfig())

    assert parser.total_pages(site.render(1)) == 10
    assert parser.count_items(site.render(10)) == 5
    assert parser.total_pages("<html><body></body></html>") == 0
    single = '<div class="post-feed"><article><a href="/x">x</a></article></div>'
    assert parser.total_pages(single) == 1


def test_parser_keeps_site_index_for_cards_without_link() -> None:
    html = """
    <div class="post-feed">
      <article><a href="/products/new/">new</a></article>
      <article><h3 class="entry-title">broken</h3></article>
      <article><a href="/products/old/">old</a></article>
    </div>
    """
    records = CatalogPageParser(SelectorConfig()).parse_records(html, PAGE_URL)
    assert [(record.url.rsplit("/", 2)[-2], record.site_index_in_page) for record in records] == [
        ("old", 0),
        ("new", 2),
    ]


def test_parser_raises_when_no_card_has_link() -> None:
    html = '<div class="post-feed"><article><p>no link</p></article></div>'
    with pytest.raises(MarkupError):
        CatalogPageParser(SelectorConfig()).parse_records(html, PAGE_URL)


def test_http_engine_fetches_and_parses(site_factory, url_for) -> None:
    site = site_factory(total_products=29)
    seen_agents: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen_agents.append(request.headers["User-Agent"])
        page = int(request.url.params["paged"])
        return httpx.Response(200, text=site.render(page))

    engine = HttpEngine(
        NetworkConfig(user_agents=["agent-x"]),
        SelectorConfig(),
        transport=httpx.MockTransport(handler),
    )

    async def scenario():
        await engine.open()
        try:
            return await engine.fetch_records(PAGE_URL, timeout=5)
        finally:
            await engine.close()

    records = asyncio.run(scenario())
    assert [record.url for record in records] == [url_for(p) for p in range(5)]
    assert seen_agents == ["agent-x"]


def test_http_engine_maps_transport_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["paged"] == "1":
            raise httpx.ReadTimeout("slow", request=request)
        return httpx.Response(503, text="busy")

    engine = HttpEngine(NetworkConfig(), SelectorConfig(), transport=httpx.MockTransport(handler))

    async def scenario():
        await engine.open()
        try:
            with pytest.raises(FetchTimeoutError):
                await engine.fetch_html("https://catalog.example/?paged=1", timeout=1)
            with pytest.raises(FetchNavigationError):
                await engine.fetch_html("https://catalog.example/?paged=2", timeout=1)
        finally:
            await engine.close()

    asyncio.run(scenario())


def test_http_engine_requires_open() -> None:
    engine = HttpEngine(NetworkConfig(), SelectorConfig())
    with pytest.raises(EngineStartupError):
        asyncio.run(engine.fetch_html(PAGE_URL, timeout=1))


def test_create_engine_selects_implementation() -> None:
    assert isinstance(create_engine("http", NetworkConfig(), SelectorConfig()), HttpEngine)
    assert isinstance(create_engine("browser", NetworkConfig(), SelectorConfig()), BrowserEngine)
