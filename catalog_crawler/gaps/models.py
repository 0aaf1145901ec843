from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class PageGap:
    page_id: int
    actual_count: int
    missing_indices: list[int]
    expected_count: int

    @property
    def is_partial(self) -> bool:
        return self.actual_count > 0

    @property
    def completeness_ratio(self) -> float:
        if self.expected_count == 0:
            return 1.0
        return self.actual_count / self.expected_count


@dataclass(slots=True)
class GapSummary:
    total_expected: int = 0
    total_actual: int = 0

    @property
    def completion_percentage(self) -> float:
        if self.total_expected == 0:
            return 100.0
        return round(self.total_actual / self.total_expected * 100, 2)


@dataclass(slots=True)
class GapDetectionResult:
    missing_pages: list[PageGap] = field(default_factory=list)
    summary: GapSummary = field(default_factory=GapSummary)

    @property
    def total_missing_products(self) -> int:
        return sum(len(gap.missing_indices) for gap in self.missing_pages)

    @property
    def completely_missing_page_ids(self) -> list[int]:
        return [gap.page_id for gap in self.missing_pages if not gap.is_partial]

    @property
    def partially_missing_page_ids(self) -> list[int]:
        return [gap.page_id for gap in self.missing_pages if gap.is_partial]


@dataclass(slots=True)
class GapCollectionResult:
    collected: int = 0
    failed: int = 0
    skipped: int = 0
    collected_pages: list[int] = field(default_factory=list)
    failed_pages: list[int] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
