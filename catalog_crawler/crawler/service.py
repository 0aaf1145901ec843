from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from catalog_crawler.config.models import GlobalConfig
from catalog_crawler.crawler.collector import ProductListCollector
from catalog_crawler.crawler.engines import CatalogEngine, create_engine
from catalog_crawler.crawler.metadata import SiteMetadataCache, SiteMetadataProbe
from catalog_crawler.crawler.models import CollectResult, ProgressSnapshot, TaskStatusEvent
from catalog_crawler.crawler.progress import ProgressChannel
from catalog_crawler.gaps import GapCollectionResult, GapCollector, GapDetectionResult, GapDetector
from catalog_crawler.logger import get_logger
from catalog_crawler.runtime import RuntimeContext

logger = get_logger(__name__)

T = TypeVar("T")
EngineFactory = Callable[[GlobalConfig], CatalogEngine]


def default_engine_factory(config: GlobalConfig) -> CatalogEngine:
    return create_engine(config.crawl.engine, config.network, config.catalog.selectors)


@dataclass(slots=True)
class CrawlReport:
    collect: CollectResult
    detection: GapDetectionResult | None = None
    backfill: GapCollectionResult | None = None


class CrawlService:
    """Оркестровка: инкрементальный обход, поиск пропусков и их добор."""

    def __init__(
        self,
        context: RuntimeContext,
        engine_factory: EngineFactory = default_engine_factory,
    ):
        self.context = context
        self.engine_factory = engine_factory
        self.metadata_cache = SiteMetadataCache(context.config.crawl.metadata_ttl_sec)

    async def run(self) -> CrawlReport:
        """Обход нового диапазона и, если включено, добор пропусков."""
        return await self._with_engine(self._run)

    async def detect_gaps(self, *, with_metadata: bool = True) -> GapDetectionResult:
        if not with_metadata:
            return self._detector().detect()
        return await self._with_engine(self._detect_with_metadata)

    async def backfill(self, page_id: int | None = None) -> tuple[GapDetectionResult | None, GapCollectionResult]:
        async def _backfill(engine: CatalogEngine, channel: ProgressChannel):
            collector = self._gap_collector(engine, channel)
            if page_id is not None:
                return None, await collector.collect_page(page_id)
            detection = await self._detect_with_metadata(engine, channel)
            return detection, await collector.collect(detection)

        return await self._with_engine(_backfill)

    async def _run(self, engine: CatalogEngine, channel: ProgressChannel) -> CrawlReport:
        config = self.context.config
        collector = ProductListCollector(
            engine,
            self.context.store,
            config.catalog,
            config.crawl,
            metadata_cache=self.metadata_cache,
            progress=channel,
            cancel_event=self.context.cancel_event,
            dry_run=self.context.dry_run,
        )
        result = await collector.collect(self.context.effective_page_limit)
        report = CrawlReport(collect=result)
        if (
            not self.context.backfill
            or not config.gaps.enabled
            or self.context.dry_run
            or self.context.stop_requested
        ):
            return report
        report.detection = self._detector().detect(result.metadata)
        if report.detection.missing_pages:
            report.backfill = await self._gap_collector(engine, channel).collect(report.detection)
        return report

    async def _detect_with_metadata(
        self, engine: CatalogEngine, channel: ProgressChannel
    ) -> GapDetectionResult:
        config = self.context.config
        probe = SiteMetadataProbe(engine, config.catalog, config.crawl.page_timeout_sec)
        metadata = await self.metadata_cache.get_or_fetch(probe.probe)
        return self._detector().detect(metadata)

    def _detector(self) -> GapDetector:
        return GapDetector(self.context.store, self.context.config.catalog.page_size)

    def _gap_collector(self, engine: CatalogEngine, channel: ProgressChannel) -> GapCollector:
        config = self.context.config
        return GapCollector(
            engine,
            self.context.store,
            config.catalog,
            config.crawl,
            config.gaps,
            metadata_cache=self.metadata_cache,
            progress=channel,
            cancel_event=self.context.cancel_event,
        )

    async def _with_engine(
        self, operation: Callable[[CatalogEngine, ProgressChannel], Awaitable[T]]
    ) -> T:
        engine = self.engine_factory(self.context.config)
        channel = ProgressChannel()
        reporter = asyncio.create_task(_report_progress(channel))
        try:
            await engine.open()
            return await operation(engine, channel)
        finally:
            await engine.close()
            channel.close()
            await reporter


async def _report_progress(channel: ProgressChannel) -> None:
    async for item in channel.stream():
        if isinstance(item, TaskStatusEvent):
            payload = item.to_dict()
            if item.status in ("error", "stopped"):
                logger.warning("Событие задачи", extra={"task": item.task_id, "event": payload})
            elif item.task_id.endswith(("range", "complete")):
                logger.info("Событие задачи", extra={"task": item.task_id, "event": payload})
            else:
                logger.debug("Событие задачи", extra={"task": item.task_id, "event": payload})
        elif isinstance(item, ProgressSnapshot) and item.stage_complete:
            logger.info(
                "Этап завершён",
                extra={
                    "success_pages": item.processed_successfully,
                    "total_pages": item.total_pages,
                    "retry_cycle": item.retry_cycle,
                },
            )
