from __future__ import annotations

import asyncio
import signal
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, TypeVar

from dotenv import load_dotenv
from rich.console import Console

from catalog_crawler.config.errors import ConfigLoaderError
from catalog_crawler.config.loader import load_global_config
from catalog_crawler.config.runtime_paths import resolve_optional_path
from catalog_crawler.crawler.service import CrawlReport, CrawlService, EngineFactory, default_engine_factory
from catalog_crawler.gaps import GapCollectionResult, GapDetectionResult
from catalog_crawler.logger import get_logger
from catalog_crawler.runtime import RuntimeContext
from catalog_crawler.state.storage import ProductStore

console = Console()
logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class RunnerOptions:
    config_path: Path | None
    run_id: str | None = None
    page_limit: int | None = None
    reset_state: bool = False
    dry_run: bool = False
    backfill: bool = True


class CrawlRunner:
    """Высокоуровневый раннер: конфигурация, хранилище и запуск асинхронного сервиса."""

    def __init__(self, engine_factory: EngineFactory = default_engine_factory) -> None:
        self.engine_factory = engine_factory
        self.latest_report: CrawlReport | None = None

    def run(self, options: RunnerOptions) -> CrawlReport:
        """Инкрементальный обход с добором пропусков."""
        report = self._execute(options, lambda service: service.run())
        self.latest_report = report
        self._print_report(report)
        return report

    def detect_gaps(self, options: RunnerOptions, *, with_metadata: bool = True) -> GapDetectionResult:
        return self._execute(
            options, lambda service: service.detect_gaps(with_metadata=with_metadata)
        )

    def backfill(
        self, options: RunnerOptions, page_id: int | None = None
    ) -> tuple[GapDetectionResult | None, GapCollectionResult]:
        return self._execute(options, lambda service: service.backfill(page_id))

    def _execute(self, options: RunnerOptions, operation: Callable[[CrawlService], Awaitable[T]]) -> T:
        load_dotenv(resolve_optional_path("CRAWLER_DOTENV_PATH"))
        run_id = options.run_id or str(uuid.uuid4())
        logger.info(
            "Запуск сборщика",
            extra={
                "run_id": run_id,
                "config": str(options.config_path) if options.config_path else "env",
            },
        )
        try:
            config = load_global_config(options.config_path)
        except ConfigLoaderError as exc:
            console.print(f"[bold red]Ошибка конфигурации:[/bold red] {exc}")
            raise

        store = ProductStore(config.state.database)
        if options.reset_state:
            logger.warning("Запрошен полный сброс локального хранилища")
            store.reset_all()
        context = RuntimeContext(
            run_id=run_id,
            started_at=datetime.now(timezone.utc),
            config=config,
            store=store,
            dry_run=options.dry_run,
            page_limit=options.page_limit,
            backfill=options.backfill,
        )
        console.print(
            f"[yellow]Контекст подготовлен[/yellow]: engine={config.crawl.engine}, "
            f"page_size={config.catalog.page_size}, limit={context.effective_page_limit}, "
            f"dry_run={context.dry_run}, в базе={store.count()}"
        )
        try:
            return asyncio.run(self._run_with_signals(context, operation))
        finally:
            store.close()

    async def _run_with_signals(
        self,
        context: RuntimeContext,
        operation: Callable[[CrawlService], Awaitable[T]],
    ) -> T:
        loop = asyncio.get_running_loop()
        installed: list[signal.Signals] = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._on_stop_signal, context, sig)
            except (NotImplementedError, RuntimeError):
                continue
            installed.append(sig)
        try:
            service = CrawlService(context, engine_factory=self.engine_factory)
            return await operation(service)
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)

    @staticmethod
    def _on_stop_signal(context: RuntimeContext, sig: signal.Signals) -> None:
        if context.stop_requested:
            return
        logger.warning("Получен сигнал остановки, завершаем текущие страницы", extra={"signal": sig.name})
        context.request_stop()

    def _print_report(self, report: CrawlReport) -> None:
        collect = report.collect
        upsert = collect.upsert
        console.print(
            f"[green]Обход завершён[/green]: страниц={len(collect.statuses)}, "
            f"товаров={len(collect.records)}, неудачных страниц={len(collect.failed_pages)}"
            + (" [yellow](остановлен)[/yellow]" if collect.cancelled else "")
        )
        if upsert is not None:
            console.print(
                f"Сохранение: добавлено={upsert.added}, обновлено={upsert.updated}, "
                f"без изменений={upsert.unchanged}, ошибок={upsert.failed}"
            )
        else:
            console.print("[cyan]Запись в хранилище не выполнялась[/cyan]")
        for status in collect.failed_pages:
            console.print(
                f"  [red]•[/red] страница {status.site_page_number}: {status.status}, "
                f"попыток={status.attempt}, собрано {status.collected}/{status.expected}"
            )
        if report.detection is not None:
            detection = report.detection
            console.print(
                f"Заполненность: {detection.summary.completion_percentage:.2f}%, "
                f"пропущено товаров={detection.total_missing_products}"
            )
        if report.backfill is not None:
            backfill = report.backfill
            console.print(
                f"[bold]Добор пропусков[/bold]: добавлено={backfill.collected}, "
                f"ошибок={backfill.failed}, пропущено={backfill.skipped}"
            )
