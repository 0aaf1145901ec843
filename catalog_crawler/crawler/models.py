from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

PageState = Literal["waiting", "attempting", "success", "incomplete", "failed"]
TaskState = Literal["running", "success", "error", "stopped"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class SiteMetadata:
    """Снимок пагинации сайта на момент пробы."""

    total_site_pages: int
    last_page_product_count: int
    fetched_at: datetime = field(default_factory=_utcnow)


@dataclass(slots=True)
class RawProductRecord:
    """Карточка, как её вернул движок, без стабильного адреса.

    ``site_index_in_page`` считается от самой старой карточки страницы.
    """

    url: str
    site_index_in_page: int
    manufacturer: str | None = None
    model: str | None = None
    certificate_id: str | None = None


@dataclass(slots=True)
class ProductRecord:
    url: str
    page_id: int
    index_in_page: int
    manufacturer: str | None = None
    model: str | None = None
    certificate_id: str | None = None

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.page_id, self.index_in_page)


@dataclass(slots=True)
class PageStatus:
    page_id: int
    site_page_number: int
    status: PageState = "waiting"
    attempt: int = 0
    collected: int = 0
    expected: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass(slots=True)
class UpsertSummary:
    added: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.added + self.updated + self.unchanged + self.failed


@dataclass(slots=True)
class CollectResult:
    """Итог одного вызова ``ProductListCollector.collect``."""

    records: list[ProductRecord]
    statuses: dict[int, PageStatus]
    failed_pages: list[PageStatus]
    upsert: UpsertSummary | None = None
    cancelled: bool = False
    metadata: SiteMetadata | None = None

    @property
    def success_rate(self) -> float:
        if not self.statuses:
            return 1.0
        succeeded = sum(1 for item in self.statuses.values() if item.status == "success")
        return succeeded / len(self.statuses)


@dataclass(slots=True)
class ProgressSnapshot:
    processed_successfully: int
    total_pages: int
    statuses: dict[int, PageState]
    retry_cycle: int
    stage_started_at: datetime
    stage_complete: bool = False


@dataclass(slots=True)
class TaskStatusEvent:
    task_id: str
    status: TaskState
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
            **self.payload,
        }
