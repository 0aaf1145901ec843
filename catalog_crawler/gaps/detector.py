from __future__ import annotations

from typing import Protocol

from rich.console import Console
from rich.table import Table

from catalog_crawler.crawler.models import SiteMetadata
from catalog_crawler.crawler.page_index import PageIndexMapper
from catalog_crawler.gaps.models import GapDetectionResult, PageGap
from catalog_crawler.logger import get_logger

logger = get_logger(__name__)


class SlotIndexSource(Protocol):
    def query_indices_for_page(self, page_id: int) -> set[int]: ...

    def max_page_id(self) -> int | None: ...


class GapDetector:
    """Ищет незанятые слоты ``(page_id, index_in_page)`` в хранилище."""

    def __init__(self, store: SlotIndexSource, page_size: int):
        self.store = store
        self.mapper = PageIndexMapper(page_size)

    def detect(self, metadata: SiteMetadata | None = None) -> GapDetectionResult:
        """Пропуски во всём сохранённом диапазоне ``0..max_page_id``.

        Проверка идёт только до самого нового сохранённого слота: позиции выше
        него ещё не дошёл инкрементальный обход, это не пропуски.
        """
        max_page_id = self.store.max_page_id()
        if max_page_id is None:
            return GapDetectionResult()
        frontier = max_page_id * self.mapper.page_size + max(
            self.store.query_indices_for_page(max_page_id)
        ) + 1
        total_products = self._total_products(metadata)
        limit = frontier if total_products is None else min(frontier, total_products)
        return self._scan(0, max_page_id, limit)

    def detect_range(
        self,
        start_page_id: int,
        end_page_id: int,
        metadata: SiteMetadata | None = None,
    ) -> GapDetectionResult:
        """Пропуски в инклюзивном диапазоне страниц хранилища.

        Без метаданных каждая страница считается полной; с метаданными самая
        новая локальная страница ограничена числом опубликованных товаров.
        """
        if start_page_id < 0 or end_page_id < start_page_id:
            raise ValueError(f"Некорректный диапазон страниц: {start_page_id}..{end_page_id}")
        return self._scan(start_page_id, end_page_id, self._total_products(metadata))

    def _scan(self, start_page_id: int, end_page_id: int, slot_limit: int | None) -> GapDetectionResult:
        result = GapDetectionResult()
        for page_id in range(start_page_id, end_page_id + 1):
            if slot_limit is None:
                expected = self.mapper.page_size
            else:
                expected = self.mapper.expected_slot_count(page_id, slot_limit)
            if expected == 0:
                continue
            present = {
                index for index in self.store.query_indices_for_page(page_id) if index < expected
            }
            result.summary.total_expected += expected
            result.summary.total_actual += len(present)
            missing = [index for index in range(expected) if index not in present]
            if missing:
                result.missing_pages.append(
                    PageGap(
                        page_id=page_id,
                        actual_count=len(present),
                        missing_indices=missing,
                        expected_count=expected,
                    )
                )
        logger.info(
            "Проверка пропусков завершена",
            extra={
                "pages": end_page_id - start_page_id + 1,
                "missing_products": result.total_missing_products,
                "pages_with_gaps": len(result.missing_pages),
            },
        )
        return result

    def _total_products(self, metadata: SiteMetadata | None) -> int | None:
        if metadata is None:
            return None
        return self.mapper.total_products(
            metadata.total_site_pages, metadata.last_page_product_count
        )


def render_gap_report(result: GapDetectionResult, console: Console) -> None:
    summary = result.summary
    console.print(
        f"[bold]Заполненность[/bold]: {summary.total_actual}/{summary.total_expected} "
        f"({summary.completion_percentage:.2f}%), пропущено товаров: "
        f"{result.total_missing_products}"
    )
    if not result.missing_pages:
        console.print("[green]Пропусков не найдено[/green]")
        return
    table = Table(title="Страницы с пропусками")
    table.add_column("page_id", justify="right")
    table.add_column("есть", justify="right")
    table.add_column("ожидается", justify="right")
    table.add_column("заполнено", justify="right")
    table.add_column("пропущенные индексы")
    for gap in result.missing_pages:
        table.add_row(
            str(gap.page_id),
            str(gap.actual_count),
            str(gap.expected_count),
            f"{gap.completeness_ratio * 100:.0f}%",
            ", ".join(str(index) for index in gap.missing_indices),
        )
    console.print(table)
