from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True)
class ErrorEvent:
    """Структурированное описание сбоя страницы для журнала и событий задач."""

    error_type: str
    error_source: str
    url: str | None = None
    retry_index: int | None = None
    action_required: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "error_type": self.error_type,
            "error_source": self.error_source,
            "timestamp": _now_iso(),
        }
        if self.url:
            payload["url"] = self.url
        if self.retry_index is not None:
            payload["retry_index"] = self.retry_index
        if self.action_required:
            payload["action_required"] = list(self.action_required)
        if self.metadata:
            payload["details"] = dict(self.metadata)
        return payload


def build_error_event(
    *,
    error_type: str,
    error_source: str,
    url: str | None = None,
    retry_index: int | None = None,
    action_required: Iterable[str] | str | None = None,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Собирает JSON-совместимый словарь события ошибки."""
    if isinstance(action_required, str):
        actions = [action_required]
    else:
        actions = list(action_required or [])
    event = ErrorEvent(
        error_type=error_type,
        error_source=error_source,
        url=url,
        retry_index=retry_index,
        action_required=actions,
        metadata=metadata or {},
    )
    return event.to_dict()
