from __future__ import annotations

import os
from typing import Iterable

from catalog_crawler.config.errors import ConfigLoaderError
from catalog_crawler.config.models import (
    DEFAULT_CATALOG_URL,
    CatalogConfig,
    CrawlConfig,
    DelayConfig,
    GapConfig,
    GlobalConfig,
    NetworkConfig,
    SelectorConfig,
    StateConfig,
    _default_user_agents,
)
from catalog_crawler.config.runtime_paths import resolve_path


def load_global_config_from_env() -> GlobalConfig:
    """Строит глобальную конфигурацию на основе переменных окружения."""
    defaults = SelectorConfig()
    selectors = SelectorConfig(
        item_selector=os.getenv("CATALOG_ITEM_SELECTOR", defaults.item_selector),
        pagination_selector=os.getenv(
            "CATALOG_PAGINATION_SELECTOR", defaults.pagination_selector
        ),
        link_selector=os.getenv("CATALOG_LINK_SELECTOR", defaults.link_selector),
        manufacturer_selector=os.getenv(
            "CATALOG_MANUFACTURER_SELECTOR", defaults.manufacturer_selector
        ),
        model_selector=os.getenv("CATALOG_MODEL_SELECTOR", defaults.model_selector),
        certificate_selector=os.getenv(
            "CATALOG_CERTIFICATE_SELECTOR", defaults.certificate_selector
        ),
        certificate_prefix=os.getenv(
            "CATALOG_CERTIFICATE_PREFIX", defaults.certificate_prefix
        ),
        newest_first=_bool("CATALOG_NEWEST_FIRST", default=True),
    )
    catalog = CatalogConfig(
        base_url=os.getenv("CATALOG_BASE_URL") or DEFAULT_CATALOG_URL,
        page_param=os.getenv("CATALOG_PAGE_PARAM") or "paged",
        page_size=_int("CATALOG_PAGE_SIZE", default=12),
        selectors=selectors,
    )

    crawl = CrawlConfig(
        engine=_crawl_engine(),
        page_range_limit=_int("CRAWL_PAGE_RANGE_LIMIT", default=10),
        initial_concurrency=_int("CRAWL_INITIAL_CONCURRENCY", default=16),
        retry_concurrency=_int("CRAWL_RETRY_CONCURRENCY", default=9),
        retry_cycles=_int("CRAWL_RETRY_CYCLES", default=3),
        page_timeout_sec=_float("CRAWL_PAGE_TIMEOUT_SEC", default=20.0),
        batch_delay_sec=_float("CRAWL_BATCH_DELAY_SEC", default=1.0),
        request_delay=_delay_from_env(
            prefix="CRAWL_REQUEST_DELAY",
            default_min=0.1,
            default_max=2.2,
        ),
        metadata_ttl_sec=_float("CRAWL_METADATA_TTL_SEC", default=3600.0),
    )

    gaps = GapConfig(
        enabled=_bool("GAPS_ENABLED", default=True),
        max_concurrent_pages=_int("GAPS_MAX_CONCURRENT_PAGES", default=3),
        delay_between_batches_sec=_float("GAPS_DELAY_BETWEEN_BATCHES_SEC", default=1.0),
        prioritize_partial_pages=_bool("GAPS_PRIORITIZE_PARTIAL_PAGES", default=True),
    )

    network = NetworkConfig(
        user_agents=_list("NETWORK_USER_AGENTS", default=_default_user_agents()),
        request_timeout_sec=_float("NETWORK_REQUEST_TIMEOUT_SEC", default=30.0),
        accept_language=os.getenv("NETWORK_ACCEPT_LANGUAGE") or None,
        browser_headless=_bool("NETWORK_BROWSER_HEADLESS", default=True),
        browser_slow_mo_ms=_int("NETWORK_BROWSER_SLOW_MO_MS", default=0),
    )

    state = StateConfig(
        database=resolve_path(
            "STATE_DATABASE_PATH",
            local_default="state/catalog.db",
            docker_default="/var/app/state/catalog.db",
        ),
    )

    return GlobalConfig(
        catalog=catalog,
        crawl=crawl,
        gaps=gaps,
        network=network,
        state=state,
    )


def _crawl_engine() -> str:
    value = os.getenv("CRAWL_ENGINE", "http").strip().lower()
    if value not in {"http", "browser"}:
        raise ConfigLoaderError("CRAWL_ENGINE должен быть 'http' или 'browser'")
    return value


def _delay_from_env(*, prefix: str, default_min: float, default_max: float) -> DelayConfig:
    min_value = _float(f"{prefix}_MIN_SEC", default=default_min)
    max_value = _float(f"{prefix}_MAX_SEC", default=default_max)
    if max_value < min_value:
        raise ConfigLoaderError(f"{prefix}_MAX_SEC должен быть не меньше {prefix}_MIN_SEC")
    return DelayConfig(min_sec=min_value, max_sec=max_value)


def _int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigLoaderError(f"Ожидается целое число в {name}") from exc


def _float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ConfigLoaderError(f"Ожидается число (float) в {name}") from exc


def _list(name: str, default: Iterable[str]) -> list[str]:
    value = os.getenv(name)
    if value is None:
        return list(default)
    tokens = [
        token.strip()
        for token in value.replace("\n", ",").split(",")
        if token.strip()
    ]
    if not tokens:
        raise ConfigLoaderError(f"Переменная {name} должна содержать минимум одно значение")
    return tokens


def _bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}
