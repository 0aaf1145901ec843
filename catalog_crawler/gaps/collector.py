from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Iterable, Protocol

from rich.console import Console

from catalog_crawler.config.models import CatalogConfig, CrawlConfig, GapConfig
from catalog_crawler.crawler.engines import CatalogEngine
from catalog_crawler.crawler.errors import CrawlCancelledError
from catalog_crawler.crawler.metadata import SiteMetadataCache, SiteMetadataProbe
from catalog_crawler.crawler.models import ProductRecord, TaskState, TaskStatusEvent, UpsertSummary
from catalog_crawler.crawler.page_index import PageIndexError, PageIndexMapper
from catalog_crawler.crawler.pool import BoundedWorkerPool, race_with_cancel, sleep_unless_cancelled
from catalog_crawler.crawler.progress import ProgressChannel
from catalog_crawler.crawler.utils import build_page_url, jitter_delay
from catalog_crawler.gaps.detector import GapDetector
from catalog_crawler.gaps.models import GapCollectionResult, GapDetectionResult, PageGap
from catalog_crawler.logger import get_logger

logger = get_logger(__name__)


class GapStore(Protocol):
    def query_indices_for_page(self, page_id: int) -> set[int]: ...

    def max_page_id(self) -> int | None: ...

    def upsert(self, records: Iterable[ProductRecord]) -> UpsertSummary: ...


@dataclass(slots=True)
class _GapOutcome:
    page_id: int
    missing: int
    added: int = 0
    skipped: bool = False
    error: str | None = None


def prioritize_gaps(gaps: Iterable[PageGap], *, partial_first: bool = True) -> list[PageGap]:
    """Сначала почти заполненные страницы, затем пустые, при равенстве меньше пропусков."""
    if partial_first:
        return sorted(
            gaps,
            key=lambda gap: (not gap.is_partial, len(gap.missing_indices), gap.page_id),
        )
    return sorted(gaps, key=lambda gap: gap.page_id)


class GapCollector:
    """Добирает товары для пропущенных слотов, найденных ``GapDetector``."""

    def __init__(
        self,
        engine: CatalogEngine,
        store: GapStore,
        catalog: CatalogConfig,
        crawl: CrawlConfig,
        gaps: GapConfig,
        *,
        metadata_cache: SiteMetadataCache | None = None,
        progress: ProgressChannel | None = None,
        cancel_event: asyncio.Event | None = None,
    ):
        self.engine = engine
        self.store = store
        self.catalog = catalog
        self.crawl = crawl
        self.gaps = gaps
        self.mapper = PageIndexMapper(catalog.page_size)
        self.metadata_cache = metadata_cache or SiteMetadataCache(crawl.metadata_ttl_sec)
        self.probe = SiteMetadataProbe(engine, catalog, crawl.page_timeout_sec)
        self.progress = progress
        self.cancel_event = cancel_event or asyncio.Event()

    async def collect(self, detection: GapDetectionResult) -> GapCollectionResult:
        ordered = prioritize_gaps(
            detection.missing_pages, partial_first=self.gaps.prioritize_partial_pages
        )
        result = GapCollectionResult()
        if not ordered:
            logger.info("Пропусков для добора нет")
            return result
        batch_size = self.gaps.max_concurrent_pages
        pool = BoundedWorkerPool(batch_size, self.cancel_event)
        logger.info(
            "Старт добора пропусков",
            extra={"pages": len(ordered), "missing_products": detection.total_missing_products},
        )
        for offset in range(0, len(ordered), batch_size):
            batch = ordered[offset:offset + batch_size]
            if offset and await sleep_unless_cancelled(
                self.gaps.delay_between_batches_sec, self.cancel_event
            ):
                break
            if self.cancel_event.is_set():
                break
            outcomes = await pool.run([gap.page_id for gap in batch], self._worker_for(batch))
            for gap in batch:
                outcome = outcomes[gap.page_id]
                if isinstance(outcome, BaseException):
                    outcome = _GapOutcome(
                        page_id=gap.page_id,
                        missing=len(gap.missing_indices),
                        error=f"Page {gap.page_id}: {outcome}",
                    )
                self._reduce(result, outcome)
        self._publish(
            "gap-complete",
            "stopped" if self.cancel_event.is_set() else "success",
            collected=result.collected,
            failed=result.failed,
            skipped=result.skipped,
        )
        logger.info(
            "Добор пропусков завершён",
            extra={
                "collected": result.collected,
                "failed": result.failed,
                "skipped": result.skipped,
            },
        )
        return result

    async def collect_page(self, page_id: int) -> GapCollectionResult:
        """Проверяет и добирает одну страницу хранилища."""
        metadata = await self.metadata_cache.get_or_fetch(self.probe.probe)
        detector = GapDetector(self.store, self.catalog.page_size)
        detection = detector.detect_range(page_id, page_id, metadata)
        return await self.collect(detection)

    def _worker_for(self, batch: list[PageGap]):
        by_page = {gap.page_id: gap for gap in batch}

        async def _worker(page_id: int) -> _GapOutcome:
            return await self._collect_gap(by_page[page_id])

        return _worker

    async def _collect_gap(self, gap: PageGap) -> _GapOutcome:
        outcome = _GapOutcome(page_id=gap.page_id, missing=len(gap.missing_indices))
        self._publish(f"gap-page-{gap.page_id}", "running", page_id=gap.page_id)
        try:
            metadata = await self.metadata_cache.get_or_fetch(self.probe.probe)
            offset = self.mapper.calculate_offset(metadata.last_page_product_count)
            site_pages = self.mapper.site_pages_for_slots(
                gap.page_id, gap.missing_indices, metadata.total_site_pages, offset
            )
            wanted = set(gap.missing_indices)
            found: dict[str, ProductRecord] = {}
            for site_page in site_pages:
                local_page_id = self.mapper.from_site_page_number(
                    site_page, metadata.total_site_pages
                )
                url = build_page_url(self.catalog.base_url, self.catalog.page_param, site_page)
                if await sleep_unless_cancelled(
                    jitter_delay(self.crawl.request_delay), self.cancel_event
                ):
                    raise CrawlCancelledError("добор остановлен")
                raw_records = await race_with_cancel(
                    self.engine.fetch_records(url, self.crawl.page_timeout_sec),
                    self.cancel_event,
                    self.crawl.page_timeout_sec,
                )
                for raw in raw_records:
                    try:
                        address = self.mapper.map_to_local_indexing(
                            local_page_id, raw.site_index_in_page, offset
                        )
                    except PageIndexError:
                        continue
                    if address.page_id == gap.page_id and address.index_in_page in wanted:
                        found[raw.url] = ProductRecord(
                            url=raw.url,
                            page_id=address.page_id,
                            index_in_page=address.index_in_page,
                            manufacturer=raw.manufacturer,
                            model=raw.model,
                            certificate_id=raw.certificate_id,
                        )
            if not found:
                outcome.skipped = True
                self._publish(f"gap-page-{gap.page_id}", "error", page_id=gap.page_id, reason="no_records")
                return outcome
            saved = self.store.upsert(found.values())
            outcome.added = saved.added
        except Exception as exc:
            outcome.error = f"Page {gap.page_id}: {exc}"
            logger.warning(
                "Не удалось добрать страницу",
                extra={"page_id": gap.page_id, "error": str(exc)},
            )
            self._publish(f"gap-page-{gap.page_id}", "error", page_id=gap.page_id, error=str(exc))
            return outcome
        self._publish(f"gap-page-{gap.page_id}", "success", page_id=gap.page_id, added=outcome.added)
        return outcome

    @staticmethod
    def _reduce(result: GapCollectionResult, outcome: _GapOutcome) -> None:
        if outcome.error is not None:
            result.failed += outcome.missing
            result.failed_pages.append(outcome.page_id)
            result.errors.append(outcome.error)
        elif outcome.skipped:
            result.skipped += outcome.missing
        else:
            result.collected += outcome.added
            result.collected_pages.append(outcome.page_id)

    def _publish(self, task_id: str, state: TaskState, **payload: Any) -> None:
        if self.progress is None:
            return
        self.progress.publish(
            TaskStatusEvent(task_id=task_id, status=state, payload={"stage": "gaps", **payload})
        )


def render_collection_report(result: GapCollectionResult, console: Console) -> None:
    console.print(
        f"[bold]Добор пропусков[/bold]: добавлено={result.collected}, "
        f"ошибок={result.failed}, пропущено={result.skipped}"
    )
    if result.collected_pages:
        console.print(
            f"[green]Заполнены страницы[/green]: {', '.join(map(str, result.collected_pages))}"
        )
    if result.failed_pages:
        console.print(f"[red]Не удалось[/red]: {', '.join(map(str, result.failed_pages))}")
    for error in result.errors:
        console.print(f"  [red]•[/red] {error}")
