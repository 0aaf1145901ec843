from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Iterable, Protocol

from catalog_crawler.config.models import CatalogConfig, CrawlConfig
from catalog_crawler.crawler.engines import CatalogEngine
from catalog_crawler.crawler.errors import (
    PageAbortedError,
    RangePreparationError,
    classify_page_error,
)
from catalog_crawler.crawler.metadata import SiteMetadataCache, SiteMetadataProbe
from catalog_crawler.crawler.models import (
    CollectResult,
    PageStatus,
    ProductRecord,
    ProgressSnapshot,
    RawProductRecord,
    SiteMetadata,
    TaskState,
    TaskStatusEvent,
    UpsertSummary,
)
from catalog_crawler.crawler.page_index import CrawlRange, PageIndexError, PageIndexMapper
from catalog_crawler.crawler.pool import BoundedWorkerPool, race_with_cancel, sleep_unless_cancelled
from catalog_crawler.crawler.progress import ProgressChannel
from catalog_crawler.crawler.utils import build_page_url, jitter_delay
from catalog_crawler.logger import get_logger

logger = get_logger(__name__)


class ProductSink(Protocol):
    def count(self) -> int: ...

    def upsert(self, records: Iterable[ProductRecord]) -> UpsertSummary: ...


class ProductListCollector:
    """Пакетный обход страниц списка с повторами неполных и упавших страниц.

    Ключ задачи страницы (``page_id`` в ``PageStatus``) означает номер страницы сайта,
    отсчитанный от самой старой. Он стабилен в пределах одного ``collect()``,
    а записи получают стабильный адрес через ``PageIndexMapper``.
    """

    def __init__(
        self,
        engine: CatalogEngine,
        store: ProductSink,
        catalog: CatalogConfig,
        crawl: CrawlConfig,
        *,
        metadata_cache: SiteMetadataCache | None = None,
        progress: ProgressChannel | None = None,
        cancel_event: asyncio.Event | None = None,
        dry_run: bool = False,
    ):
        self.engine = engine
        self.store = store
        self.catalog = catalog
        self.crawl = crawl
        self.mapper = PageIndexMapper(catalog.page_size)
        self.metadata_cache = metadata_cache or SiteMetadataCache(crawl.metadata_ttl_sec)
        self.probe = SiteMetadataProbe(engine, catalog, crawl.page_timeout_sec)
        self.progress = progress
        self.cancel_event = cancel_event or asyncio.Event()
        self.dry_run = dry_run
        self.statuses: dict[int, PageStatus] = {}
        self._page_cache: dict[int, dict[str, ProductRecord]] = {}
        self._retry_cycle = 0
        self._stage_started_at = datetime.now(timezone.utc)

    def cancel(self) -> None:
        self.cancel_event.set()

    async def resolve_metadata(self, *, force: bool = False) -> SiteMetadata:
        return await self.metadata_cache.get_or_fetch(self.probe.probe, force=force)

    async def collect(self, user_page_limit: int | None = None) -> CollectResult:
        """Собирает очередной диапазон страниц и сохраняет найденные товары."""
        limit = self.crawl.page_range_limit if user_page_limit is None else user_page_limit
        self.statuses = {}
        self._page_cache = {}
        self._retry_cycle = 0
        self._stage_started_at = datetime.now(timezone.utc)

        metadata, crawl_range = await self._prepare_range(limit)
        offset = self.mapper.calculate_offset(metadata.last_page_product_count)
        for local_page_id in crawl_range.local_page_ids:
            self.statuses[local_page_id] = PageStatus(
                page_id=local_page_id,
                site_page_number=crawl_range.total_site_pages - local_page_id,
                expected=self.mapper.expected_count(
                    local_page_id, metadata.last_page_product_count
                ),
            )
        self._emit_range_event(metadata, crawl_range)
        self._publish_snapshot()
        if crawl_range.is_empty:
            logger.info("Новых страниц для обхода нет", extra={"total_pages": metadata.total_site_pages})
            self._publish_snapshot(stage_complete=True)
            return CollectResult(records=[], statuses={}, failed_pages=[], metadata=metadata)

        logger.info(
            "Старт обхода страниц списка",
            extra={
                "start_page": crawl_range.start_page,
                "end_page": crawl_range.end_page,
                "pages": crawl_range.page_count,
            },
        )
        await self._run_pass(
            list(self.statuses), self.crawl.initial_concurrency, metadata, offset
        )
        for cycle in range(1, self.crawl.retry_cycles + 1):
            pending = [
                page_id
                for page_id, status in self.statuses.items()
                if status.status in ("failed", "incomplete")
            ]
            if not pending or self.cancel_event.is_set():
                break
            self._retry_cycle = cycle
            logger.info(
                "Повтор неполных страниц",
                extra={"cycle": cycle, "pages": len(pending)},
            )
            self._emit(
                f"list-retry-{cycle}",
                "running",
                stage="retry",
                cycle=cycle,
                pages=[self.statuses[page_id].site_page_number for page_id in pending],
            )
            self._stage_started_at = datetime.now(timezone.utc)
            if await sleep_unless_cancelled(self.crawl.batch_delay_sec, self.cancel_event):
                break
            await self._run_pass(pending, self.crawl.retry_concurrency, metadata, offset)

        cancelled = self.cancel_event.is_set()
        if cancelled:
            self._abort_unfinished()
        records = self.finalize(only_successful=cancelled)
        upsert: UpsertSummary | None = None
        if records and not self.dry_run:
            upsert = self.store.upsert(records)
        failed_pages = [status for status in self.statuses.values() if status.status != "success"]
        result = CollectResult(
            records=records,
            statuses=dict(self.statuses),
            failed_pages=failed_pages,
            upsert=upsert,
            cancelled=cancelled,
            metadata=metadata,
        )
        self._emit(
            "list-complete",
            "stopped" if cancelled else ("success" if not failed_pages else "error"),
            stage="complete",
            processed_pages=len(self.statuses),
            collected_products=len(records),
            failed_pages=[status.site_page_number for status in failed_pages],
            success_rate=round(result.success_rate, 4),
        )
        self._publish_snapshot(stage_complete=True)
        logger.info(
            "Обход страниц списка завершён",
            extra={
                "products": len(records),
                "failed_pages": len(failed_pages),
                "cancelled": cancelled,
            },
        )
        return result

    def finalize(self, *, only_successful: bool = False) -> list[ProductRecord]:
        """Записи страниц в порядке стабильного адреса.

        После остановки берутся только страницы, успевшие получить статус ``success``.
        """
        records = [
            record
            for page_id, cache in self._page_cache.items()
            if not only_successful or self.statuses[page_id].status == "success"
            for record in cache.values()
        ]
        records.sort(key=lambda record: (record.sort_key, record.url))
        return records

    async def _prepare_range(self, limit: int) -> tuple[SiteMetadata, CrawlRange]:
        try:
            metadata = await self.resolve_metadata()
            crawl_range = self.mapper.calculate_crawling_range(
                metadata.total_site_pages,
                metadata.last_page_product_count,
                limit,
                collected_count=self.store.count(),
            )
        except RangePreparationError as exc:
            self._emit("list-range", "error", stage="range", error=str(exc))
            raise
        except Exception as exc:
            self._emit("list-range", "error", stage="range", error=str(exc))
            raise RangePreparationError(f"Не удалось подготовить диапазон обхода: {exc}") from exc
        return metadata, crawl_range

    async def _run_pass(
        self,
        page_ids: list[int],
        concurrency: int,
        metadata: SiteMetadata,
        offset: int,
    ) -> None:
        pool = BoundedWorkerPool(concurrency, self.cancel_event)

        async def _worker(page_id: int) -> None:
            await self._process_page(page_id, metadata, offset)

        await pool.run(page_ids, _worker)

    async def _process_page(self, page_id: int, metadata: SiteMetadata, offset: int) -> None:
        status = self.statuses[page_id]
        if status.status == "success":
            return
        status.status = "attempting"
        status.attempt += 1
        url = build_page_url(self.catalog.base_url, self.catalog.page_param, status.site_page_number)
        self._emit(
            f"list-page-{status.site_page_number}",
            "running",
            stage="page",
            page_number=status.site_page_number,
            attempt=status.attempt,
            url=url,
        )
        self._publish_snapshot()
        try:
            if await sleep_unless_cancelled(jitter_delay(self.crawl.request_delay), self.cancel_event):
                raise PageAbortedError("обход остановлен", status.site_page_number, status.attempt, url)
            raw_records = await race_with_cancel(
                self.engine.fetch_records(url, self.crawl.page_timeout_sec),
                self.cancel_event,
                self.crawl.page_timeout_sec,
            )
            self._merge(page_id, raw_records, offset)
        except Exception as exc:
            error = classify_page_error(exc, status.site_page_number, status.attempt, url)
            status.status = "failed"
            status.errors.append(str(error))
            logger.warning(
                "Страница списка не обработана",
                extra={"page": status.site_page_number, "error_event": error.to_event()},
            )
            self._emit(
                f"list-page-{status.site_page_number}",
                "stopped" if error.kind == "Abort" else "error",
                stage="page",
                page_number=status.site_page_number,
                attempt=status.attempt,
                url=url,
                error=str(error),
                error_kind=error.kind,
            )
            self._publish_snapshot()
            return

        status.collected = len(self._page_cache.get(page_id, {}))
        if status.collected >= status.expected:
            status.status = "success"
        else:
            status.status = "incomplete"
        self._emit(
            f"list-page-{status.site_page_number}",
            "success" if status.status == "success" else "error",
            stage="page",
            page_number=status.site_page_number,
            attempt=status.attempt,
            url=url,
            collected=status.collected,
            expected=status.expected,
        )
        self._publish_snapshot()

    def _merge(self, page_id: int, raw_records: list[RawProductRecord], offset: int) -> None:
        cache = self._page_cache.setdefault(page_id, {})
        for raw in raw_records:
            try:
                address = self.mapper.map_to_local_indexing(page_id, raw.site_index_in_page, offset)
            except PageIndexError as exc:
                logger.warning(
                    "Карточка вне ожидаемой сетки страницы",
                    extra={"url": raw.url, "error": str(exc)},
                )
                continue
            cache[raw.url] = ProductRecord(
                url=raw.url,
                page_id=address.page_id,
                index_in_page=address.index_in_page,
                manufacturer=raw.manufacturer,
                model=raw.model,
                certificate_id=raw.certificate_id,
            )

    def _abort_unfinished(self) -> None:
        for status in self.statuses.values():
            if status.status in ("waiting", "attempting"):
                error = PageAbortedError(
                    "обход остановлен", status.site_page_number, status.attempt
                )
                status.status = "failed"
                status.errors.append(str(error))

    def _emit_range_event(self, metadata: SiteMetadata, crawl_range: CrawlRange) -> None:
        estimated = sum(status.expected for status in self.statuses.values())
        self._emit(
            "list-range",
            "success",
            stage="range",
            total_pages=metadata.total_site_pages,
            start_page=crawl_range.start_page,
            end_page=crawl_range.end_page,
            page_count=crawl_range.page_count,
            estimated_product_count=estimated,
            last_page_product_count=metadata.last_page_product_count,
        )

    def _emit(self, task_id: str, state: TaskState, **payload: Any) -> None:
        if self.progress is None:
            return
        self.progress.publish(TaskStatusEvent(task_id=task_id, status=state, payload=payload))

    def _publish_snapshot(self, *, stage_complete: bool = False) -> None:
        if self.progress is None:
            return
        self.progress.publish(
            ProgressSnapshot(
                processed_successfully=sum(
                    1 for status in self.statuses.values() if status.status == "success"
                ),
                total_pages=len(self.statuses),
                statuses={page_id: status.status for page_id, status in self.statuses.items()},
                retry_cycle=self._retry_cycle,
                stage_started_at=self._stage_started_at,
                stage_complete=stage_complete,
            )
        )
