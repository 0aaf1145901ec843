from __future__ import annotations

import pytest

from catalog_crawler.crawler.page_index import (
    CrawlRange,
    LocalAddress,
    PageIndexError,
    PageIndexMapper,
    SiteSlot,
)


@pytest.fixture
def mapper() -> PageIndexMapper:
    return PageIndexMapper(page_size=12)


def test_calculate_offset(mapper: PageIndexMapper) -> None:
    assert mapper.calculate_offset(5) == 7
    assert mapper.calculate_offset(12) == 0
    assert mapper.calculate_offset(0) == 0
    with pytest.raises(PageIndexError):
        mapper.calculate_offset(13)


def test_site_page_number_is_self_inverse(mapper: PageIndexMapper) -> None:
    for local_page_id in range(10):
        site_page = mapper.to_site_page_number(local_page_id, 10)
        assert mapper.from_site_page_number(site_page, 10) == local_page_id
    assert mapper.to_site_page_number(0, 10) == 10
    assert mapper.to_site_page_number(9, 10) == 1


def test_first_crawl_example_range(mapper: PageIndexMapper) -> None:
    crawl_range = mapper.calculate_crawling_range(10, 5, 3)

    assert crawl_range == CrawlRange(start_page=10, end_page=8, total_site_pages=10)
    assert crawl_range.site_pages == [10, 9, 8]
    assert crawl_range.local_page_ids == [0, 1, 2]
    assert mapper.expected_count(0, 5) == 5
    assert mapper.expected_count(1, 5) == 12


def test_unlimited_range_covers_every_page(mapper: PageIndexMapper) -> None:
    crawl_range = mapper.calculate_crawling_range(10, 5, 0)
    assert crawl_range.page_count == 10
    assert crawl_range.end_page == 1


def test_range_continues_after_collected_products(mapper: PageIndexMapper) -> None:
    # 5 + 12 + 12 товаров уже собраны с трёх самых старых страниц.
    crawl_range = mapper.calculate_crawling_range(10, 5, 3, collected_count=29)
    assert crawl_range.site_pages == [7, 6, 5]


def test_range_after_new_publication_restarts_on_shifted_page(mapper: PageIndexMapper) -> None:
    # После публикации одного товара позиция 29 оказалась последней на странице 8.
    crawl_range = mapper.calculate_crawling_range(10, 6, 2, collected_count=29)
    assert crawl_range.site_pages == [8, 7]


def test_range_is_empty_when_everything_collected(mapper: PageIndexMapper) -> None:
    assert mapper.calculate_crawling_range(10, 5, 3, collected_count=113).is_empty
    assert mapper.calculate_crawling_range(0, 0, 3).is_empty
    assert mapper.calculate_crawling_range(10, 5, 3, collected_count=113).local_page_ids == []


def test_range_limit_is_clamped_to_oldest_page(mapper: PageIndexMapper) -> None:
    crawl_range = mapper.calculate_crawling_range(3, 12, 10, collected_count=12)
    assert crawl_range.site_pages == [2, 1]


def test_map_to_local_indexing_is_order_preserving(mapper: PageIndexMapper) -> None:
    offset = mapper.calculate_offset(5)
    addresses = [
        mapper.map_to_local_indexing(local_page_id, index, offset)
        for local_page_id, count in ((0, 5), (1, 12), (2, 12))
        for index in range(count)
    ]
    positions = [address.page_id * 12 + address.index_in_page for address in addresses]
    assert positions == list(range(29))
    assert addresses[0] == LocalAddress(page_id=0, index_in_page=0)
    assert addresses[5] == LocalAddress(page_id=0, index_in_page=5)
    assert addresses[-1] == LocalAddress(page_id=2, index_in_page=4)


def test_address_is_stable_across_new_publications(mapper: PageIndexMapper) -> None:
    # Товар с позицией 40 при 113 товарах на сайте (N=10, L=5).
    before = _address_of_position(mapper, 40, total=113)
    for published in range(1, 30):
        after = _address_of_position(mapper, 40, total=113 + published)
        assert after == before


def test_locate_slot_inverts_mapping(mapper: PageIndexMapper) -> None:
    for last in (1, 5, 12):
        offset = mapper.calculate_offset(last)
        for position in range(60):
            slot = mapper.locate_slot(position // 12, position % 12, offset)
            address = mapper.map_to_local_indexing(
                slot.local_page_id, slot.site_index_in_page, offset
            )
            assert address.page_id * 12 + address.index_in_page == position


def test_locate_slot_examples(mapper: PageIndexMapper) -> None:
    offset = mapper.calculate_offset(5)
    assert mapper.locate_slot(0, 4, offset) == SiteSlot(local_page_id=0, site_index_in_page=4)
    assert mapper.locate_slot(0, 5, offset) == SiteSlot(local_page_id=1, site_index_in_page=0)
    assert mapper.locate_slot(1, 1, offset) == SiteSlot(local_page_id=1, site_index_in_page=8)


def test_site_pages_for_slots_spans_two_pages_with_offset(mapper: PageIndexMapper) -> None:
    offset = mapper.calculate_offset(5)
    assert mapper.site_pages_for_slots(1, [0, 11], 10, offset) == [9, 8]
    assert mapper.site_pages_for_slots(1, range(12), 10, mapper.calculate_offset(12)) == [9]


def test_site_pages_for_slots_skips_unpublished(mapper: PageIndexMapper) -> None:
    offset = mapper.calculate_offset(5)
    assert mapper.site_pages_for_slots(20, [0, 1], 10, offset) == []


def test_expected_slot_count_for_newest_stored_page(mapper: PageIndexMapper) -> None:
    assert mapper.expected_slot_count(0, 113) == 12
    assert mapper.expected_slot_count(9, 113) == 5
    assert mapper.expected_slot_count(10, 113) == 0
    assert mapper.total_products(10, 5) == 113


@pytest.mark.parametrize(
    "call",
    [
        lambda m: m.calculate_crawling_range(-1, 5, 3),
        lambda m: m.calculate_crawling_range(10, 5, -1),
        lambda m: m.calculate_crawling_range(10, 5, 3, collected_count=-5),
        lambda m: m.calculate_crawling_range(10, 0, 3),
        lambda m: m.map_to_local_indexing(-1, 0, 0),
        lambda m: m.map_to_local_indexing(0, 5, 7),
        lambda m: m.to_site_page_number(10, 10),
        lambda m: m.locate_slot(0, 12, 0),
    ],
)
def test_invalid_input_raises(mapper: PageIndexMapper, call) -> None:
    with pytest.raises(PageIndexError):
        call(mapper)


def test_page_index_error_is_value_error() -> None:
    with pytest.raises(ValueError):
        PageIndexMapper(page_size=0)


def _address_of_position(mapper: PageIndexMapper, position: int, *, total: int) -> LocalAddress:
    """Адрес товара, вычисленный так, как его увидел бы обход при ``total`` товарах."""
    pages = -(-total // 12)
    last = total - 12 * (pages - 1)
    offset = mapper.calculate_offset(last)
    newer = total - 1 - position
    site_page = newer // 12 + 1
    site_index_newest_first = newer % 12
    local_page_id = mapper.from_site_page_number(site_page, pages)
    count_on_page = last if local_page_id == 0 else 12
    site_index = count_on_page - 1 - site_index_newest_first
    return mapper.map_to_local_indexing(local_page_id, site_index, offset)
