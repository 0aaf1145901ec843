import logging
import os
from pathlib import Path
from typing import Literal, Optional

from rich.console import Console
from rich.logging import RichHandler

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

_configured = False

# Служебные атрибуты LogRecord, которые не считаются контекстом из extra.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys()
) | {"message", "asctime", "context"}


class ExtraContextFilter(logging.Filter):
    """Собирает поля из ``extra={...}`` в строку ``key=value`` для вывода."""

    def filter(self, record: logging.LogRecord) -> bool:
        pairs = [
            f"{key}={value}"
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        ]
        record.context = f" [{' '.join(pairs)}]" if pairs else ""
        return True


def configure_logging(level: LogLevel = "INFO") -> None:
    """Настраивает цветной логгер один раз за запуск."""
    global _configured
    if not _configured:
        console = Console(stderr=True)
        rich_handler = RichHandler(console=console, show_path=False, markup=False)
        rich_handler.setFormatter(logging.Formatter("%(message)s%(context)s"))
        handlers: list[logging.Handler] = [rich_handler]
        file_handler = _build_file_handler(console)
        if file_handler:
            handlers.append(file_handler)
        context_filter = ExtraContextFilter()
        root = logging.getLogger()
        for handler in handlers:
            handler.addFilter(context_filter)
            root.addHandler(handler)
        root.setLevel(level)
        _configured = True
    else:
        logging.getLogger().setLevel(level)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Возвращает готовый логгер модуля."""
    configure_logging()
    return logging.getLogger(name)


def _build_file_handler(console: Console) -> logging.Handler | None:
    """Создаёт файловый обработчик, если указан LOG_FILE_PATH."""
    log_path_str = os.getenv("LOG_FILE_PATH")
    if not log_path_str:
        return None
    try:
        log_path = Path(log_path_str).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_path, encoding="utf-8")
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s %(levelname)s %(name)s %(message)s%(context)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        return handler
    except OSError as exc:  # pragma: no cover
        console.print(
            f"[yellow]Не удалось настроить файловый логгер '{log_path_str}': {exc}[/yellow]"
        )
        return None
