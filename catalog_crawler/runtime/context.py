from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime

from catalog_crawler.config.models import GlobalConfig
from catalog_crawler.state.storage import ProductStore


@dataclass(slots=True)
class RuntimeContext:
    """Общий контекст выполнения для всего запуска."""

    run_id: str
    started_at: datetime
    config: GlobalConfig
    store: ProductStore
    dry_run: bool = False
    page_limit: int | None = None
    backfill: bool = True
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def effective_page_limit(self) -> int:
        if self.page_limit is None:
            return self.config.crawl.page_range_limit
        return self.page_limit

    def request_stop(self) -> None:
        self.cancel_event.set()

    @property
    def stop_requested(self) -> bool:
        return self.cancel_event.is_set()
