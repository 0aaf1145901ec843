"""Поиск и добор пропущенных слотов хранилища."""

from .collector import GapCollector, prioritize_gaps, render_collection_report
from .detector import GapDetector, render_gap_report
from .models import GapCollectionResult, GapDetectionResult, GapSummary, PageGap

__all__ = [
    "GapCollectionResult",
    "GapCollector",
    "GapDetectionResult",
    "GapDetector",
    "GapSummary",
    "PageGap",
    "prioritize_gaps",
    "render_collection_report",
    "render_gap_report",
]
