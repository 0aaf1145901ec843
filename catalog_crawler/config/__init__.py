"""Пакет конфигураций (модели и загрузчик)."""

from .errors import ConfigLoaderError
from .models import (
    CatalogConfig,
    CrawlConfig,
    DelayConfig,
    GapConfig,
    GlobalConfig,
    NetworkConfig,
    SelectorConfig,
    StateConfig,
)

__all__ = [
    "CatalogConfig",
    "ConfigLoaderError",
    "CrawlConfig",
    "DelayConfig",
    "GapConfig",
    "GlobalConfig",
    "NetworkConfig",
    "SelectorConfig",
    "StateConfig",
]
