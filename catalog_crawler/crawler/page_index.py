"""Стабильная адресация товаров поверх плавающей пагинации сайта.

Сайт показывает новые товары первыми: каждая публикация сдвигает все карточки
на одну позицию, поэтому пара «номер страницы сайта / позиция на странице» для
одного и того же товара со временем меняется. Неизменной остаётся только
позиция товара в порядке публикации, считая от самого старого. Из неё и
выводится локальный адрес ``(page_id, index_in_page)``.

Термины модуля:

* ``N``: текущее число страниц сайта, ``L``: число карточек на последней
  (самой старой) странице, ``offset = page_size - L``;
* ``local_page_id`` задачи обхода (``r``): номер страницы сайта, отсчитанный
  от самой старой: ``r = N - site_page``. Страница ``r = 0`` содержит
  позиции ``[0, L)``, страница ``r >= 1`` содержит позиции
  ``[L + page_size * (r - 1), L + page_size * r)``;
* ``page_id`` и ``index_in_page`` хранимой записи: частное и остаток от
  деления позиции на ``page_size``.

Все функции чистые: метаданные передаются при каждом вызове, ничего не
кэшируется, так что пересчёт после новой пробы сайта всегда корректен.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable


class PageIndexError(ValueError):
    """Некорректные входные данные для преобразования адресов."""


@dataclass(frozen=True, slots=True)
class LocalAddress:
    page_id: int
    index_in_page: int


@dataclass(frozen=True, slots=True)
class SiteSlot:
    """Где сейчас на сайте находится слот локального адреса."""

    local_page_id: int
    site_index_in_page: int


@dataclass(frozen=True, slots=True)
class CrawlRange:
    """Инклюзивный диапазон номеров страниц сайта, обходимый от ``start_page`` вниз."""

    start_page: int
    end_page: int
    total_site_pages: int

    @classmethod
    def empty(cls, total_site_pages: int) -> "CrawlRange":
        return cls(start_page=0, end_page=0, total_site_pages=total_site_pages)

    @property
    def is_empty(self) -> bool:
        return self.start_page == 0

    @property
    def page_count(self) -> int:
        if self.is_empty:
            return 0
        return self.start_page - self.end_page + 1

    @property
    def site_pages(self) -> list[int]:
        if self.is_empty:
            return []
        return list(range(self.start_page, self.end_page - 1, -1))

    @property
    def local_page_ids(self) -> list[int]:
        return [self.total_site_pages - page for page in self.site_pages]


class PageIndexMapper:
    """Перевод между нумерацией сайта и стабильными локальными адресами."""

    def __init__(self, page_size: int):
        if page_size <= 0:
            raise PageIndexError(f"page_size должен быть положительным: {page_size}")
        self.page_size = page_size

    def calculate_offset(self, last_page_product_count: int) -> int:
        """Сколько слотов не хватает самой старой странице до полной."""
        self._check_last_count(last_page_product_count, allow_zero=True)
        if last_page_product_count == 0:
            return 0
        return self.page_size - last_page_product_count

    def to_site_page_number(self, local_page_id: int, site_total_pages: int) -> int:
        self._check_non_negative(site_total_pages=site_total_pages)
        if not 0 <= local_page_id < site_total_pages:
            raise PageIndexError(
                f"local_page_id={local_page_id} вне диапазона [0, {site_total_pages})"
            )
        return site_total_pages - local_page_id

    def from_site_page_number(self, site_page: int, site_total_pages: int) -> int:
        self._check_non_negative(site_total_pages=site_total_pages)
        if not 1 <= site_page <= site_total_pages:
            raise PageIndexError(
                f"site_page={site_page} вне диапазона [1, {site_total_pages}]"
            )
        return site_total_pages - site_page

    def map_to_local_indexing(
        self, local_page_id: int, site_index_in_page: int, offset: int
    ) -> LocalAddress:
        """Адрес карточки ``site_index_in_page`` (от старых к новым) страницы ``local_page_id``."""
        self._check_non_negative(
            local_page_id=local_page_id, site_index_in_page=site_index_in_page
        )
        self._check_offset(offset)
        if site_index_in_page >= self.page_size:
            raise PageIndexError(
                f"site_index_in_page={site_index_in_page} не меньше page_size={self.page_size}"
            )
        if local_page_id == 0:
            if site_index_in_page >= self.page_size - offset:
                raise PageIndexError(
                    f"на самой старой странице только {self.page_size - offset} карточек"
                )
            position = site_index_in_page
        else:
            position = self.page_size * local_page_id - offset + site_index_in_page
        return LocalAddress(
            page_id=position // self.page_size,
            index_in_page=position % self.page_size,
        )

    def locate_slot(self, page_id: int, index_in_page: int, offset: int) -> SiteSlot:
        """Обратное к ``map_to_local_indexing``: где слот находится на сайте сейчас."""
        self._check_non_negative(page_id=page_id, index_in_page=index_in_page)
        if index_in_page >= self.page_size:
            raise PageIndexError(
                f"index_in_page={index_in_page} не меньше page_size={self.page_size}"
            )
        self._check_offset(offset)
        return self._locate_position(page_id * self.page_size + index_in_page, offset)

    def site_pages_for_slots(
        self,
        page_id: int,
        indices: Iterable[int],
        site_total_pages: int,
        offset: int,
    ) -> list[int]:
        """Номера страниц сайта, на которых лежат указанные слоты, от старых к новым.

        Слоты, которые ещё не опубликованы, пропускаются.
        """
        pages: set[int] = set()
        for index in indices:
            slot = self.locate_slot(page_id, index, offset)
            if slot.local_page_id < site_total_pages:
                pages.add(site_total_pages - slot.local_page_id)
        return sorted(pages, reverse=True)

    def expected_count(self, local_page_id: int, last_page_product_count: int) -> int:
        """Сколько карточек должно быть на странице сайта ``local_page_id``."""
        self._check_non_negative(local_page_id=local_page_id)
        self._check_last_count(last_page_product_count, allow_zero=True)
        if local_page_id == 0:
            return last_page_product_count
        return self.page_size

    def total_products(self, site_total_pages: int, last_page_product_count: int) -> int:
        self._check_non_negative(site_total_pages=site_total_pages)
        if site_total_pages == 0:
            return 0
        self._check_last_count(last_page_product_count, allow_zero=False)
        return self.page_size * (site_total_pages - 1) + last_page_product_count

    def expected_slot_count(self, page_id: int, total_products: int) -> int:
        """Сколько слотов должно быть занято в локальной странице ``page_id``."""
        self._check_non_negative(page_id=page_id, total_products=total_products)
        return max(0, min(self.page_size, total_products - page_id * self.page_size))

    def calculate_crawling_range(
        self,
        total_site_pages: int,
        last_page_product_count: int,
        user_page_limit: int,
        collected_count: int = 0,
    ) -> CrawlRange:
        """Диапазон страниц сайта для очередного инкрементального обхода.

        ``collected_count`` товаров уже сохранено и занимает позиции
        ``[0, collected_count)``. Обход начинается со страницы, на которой лежит
        первая несобранная позиция, и идёт к новым. ``user_page_limit == 0``
        снимает ограничение на число страниц.
        """
        self._check_non_negative(
            total_site_pages=total_site_pages,
            user_page_limit=user_page_limit,
            collected_count=collected_count,
        )
        if total_site_pages == 0:
            return CrawlRange.empty(0)
        total = self.total_products(total_site_pages, last_page_product_count)
        if collected_count >= total:
            return CrawlRange.empty(total_site_pages)
        offset = self.calculate_offset(last_page_product_count)
        first = self._locate_position(collected_count, offset).local_page_id
        if user_page_limit == 0:
            last = total_site_pages - 1
        else:
            last = min(total_site_pages - 1, first + user_page_limit - 1)
        return CrawlRange(
            start_page=total_site_pages - first,
            end_page=total_site_pages - last,
            total_site_pages=total_site_pages,
        )

    def _locate_position(self, position: int, offset: int) -> SiteSlot:
        oldest_count = self.page_size - offset
        if position < oldest_count:
            return SiteSlot(local_page_id=0, site_index_in_page=position)
        shifted = position - oldest_count
        return SiteSlot(
            local_page_id=1 + shifted // self.page_size,
            site_index_in_page=shifted % self.page_size,
        )

    def _check_offset(self, offset: int) -> None:
        if not 0 <= offset < self.page_size:
            raise PageIndexError(f"offset={offset} вне диапазона [0, {self.page_size})")

    def _check_last_count(self, value: int, *, allow_zero: bool) -> None:
        lower = 0 if allow_zero else 1
        if not lower <= value <= self.page_size:
            raise PageIndexError(
                f"last_page_product_count={value} вне диапазона [{lower}, {self.page_size}]"
            )

    @staticmethod
    def _check_non_negative(**values: int) -> None:
        for name, value in values.items():
            if value < 0:
                raise PageIndexError(f"{name} не может быть отрицательным: {value}")
