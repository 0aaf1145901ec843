from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, PositiveInt, field_validator, model_validator

DEFAULT_CATALOG_URL = (
    "https://csa-iot.org/csa-iot_products/?p_keywords=&p_type%5B%5D=14"
    "&p_program_type%5B%5D=1049&p_certificate=&p_family=&p_firmware_ver="
)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


def _default_user_agents() -> list[str]:
    return [DEFAULT_USER_AGENT]


class DelayConfig(BaseModel):
    min_sec: float = Field(default=0.0, ge=0)
    max_sec: float = Field(default=0.0, ge=0)

    @model_validator(mode="after")
    def _ensure_bounds(self) -> "DelayConfig":
        if self.max_sec < self.min_sec:
            msg = "max_sec должен быть не меньше min_sec"
            raise ValueError(msg)
        return self


def _default_request_delay() -> DelayConfig:
    return DelayConfig(min_sec=0.1, max_sec=2.2)


class SelectorConfig(BaseModel):
    """CSS-селекторы карточек на странице списка."""

    item_selector: str = "div.post-feed article"
    pagination_selector: str = "div.pagination-wrapper > nav > div > a > span"
    link_selector: str = "a"
    manufacturer_selector: str = "p.entry-company.notranslate"
    model_selector: str = "h3.entry-title"
    certificate_selector: str = "span.entry-cert-id, p.entry-certificate-id"
    certificate_prefix: str = "Certificate ID:"
    newest_first: bool = Field(
        default=True,
        description="Сайт выводит карточки от новых к старым (порядок DOM разворачивается)",
    )


class CatalogConfig(BaseModel):
    """Описание каталога: адрес фильтра, размер страницы и разметка."""

    base_url: str = DEFAULT_CATALOG_URL
    page_param: str = "paged"
    page_size: PositiveInt = Field(default=12, le=200)
    selectors: SelectorConfig = Field(default_factory=SelectorConfig)

    @field_validator("base_url")
    @classmethod
    def _ensure_http_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            msg = "base_url должен начинаться с http:// или https://"
            raise ValueError(msg)
        return value


class CrawlConfig(BaseModel):
    """Параметры пакетного обхода страниц списка."""

    engine: Literal["http", "browser"] = "http"
    page_range_limit: int = Field(default=10, ge=0)
    initial_concurrency: PositiveInt = Field(default=16, le=64)
    retry_concurrency: PositiveInt = Field(default=9, le=64)
    retry_cycles: int = Field(default=3, ge=0, le=20)
    page_timeout_sec: float = Field(default=20.0, gt=0)
    batch_delay_sec: float = Field(default=1.0, ge=0)
    request_delay: DelayConfig = Field(default_factory=_default_request_delay)
    metadata_ttl_sec: float = Field(default=3600.0, ge=0)


class GapConfig(BaseModel):
    """Параметры добора пропущенных позиций."""

    enabled: bool = True
    max_concurrent_pages: PositiveInt = Field(default=3, le=32)
    delay_between_batches_sec: float = Field(default=1.0, ge=0)
    prioritize_partial_pages: bool = True


class NetworkConfig(BaseModel):
    """Глобальные сетевые настройки."""

    user_agents: list[str] = Field(default_factory=_default_user_agents)
    request_timeout_sec: float = Field(default=30, gt=0)
    accept_language: str | None = None
    browser_headless: bool = True
    browser_slow_mo_ms: int = Field(default=0, ge=0)

    @field_validator("user_agents")
    @classmethod
    def _ensure_user_agents(cls, value: list[str]) -> list[str]:
        if not value:
            msg = "Нужно указать минимум один User-Agent"
            raise ValueError(msg)
        return value


class StateConfig(BaseModel):
    """Настройки хранения собранных товаров."""

    database: Path = Field(default=Path("state/catalog.db"))


class GlobalConfig(BaseModel):
    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    crawl: CrawlConfig = Field(default_factory=CrawlConfig)
    gaps: GapConfig = Field(default_factory=GapConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    state: StateConfig = Field(default_factory=StateConfig)
