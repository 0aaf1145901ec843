"""Структурированные события ошибок."""

from .error_events import ErrorEvent, build_error_event

__all__ = ["ErrorEvent", "build_error_event"]
