from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from catalog_crawler.config.loader import ConfigLoaderError, load_global_config
from catalog_crawler.config.models import DEFAULT_CATALOG_URL


def _base_payload() -> dict:
    return {
        "catalog": {
            "base_url": "https://catalog.example/products/?p_type%5B%5D=14",
            "page_param": "paged",
            "page_size": 12,
            "selectors": {"item_selector": "div.post-feed article"},
        },
        "crawl": {
            "engine": "http",
            "page_range_limit": 5,
            "initial_concurrency": 8,
            "retry_concurrency": 4,
            "retry_cycles": 3,
            "request_delay": {"min_sec": 0.5, "max_sec": 1.5},
        },
        "gaps": {"max_concurrent_pages": 2},
        "network": {"user_agents": ["agent-1"], "request_timeout_sec": 10},
        "state": {"database": "/tmp/catalog.db"},
    }


def test_load_global_config_yaml(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yml"
    config_path.write_text(yaml.safe_dump(_base_payload()), encoding="utf-8")

    config = load_global_config(config_path)
    assert config.crawl.page_range_limit == 5
    assert config.network.user_agents == ["agent-1"]
    assert config.crawl.request_delay.max_sec == 1.5
    assert config.catalog.selectors.model_selector == "h3.entry-title"


def test_load_global_config_json(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps(_base_payload()), encoding="utf-8")

    config = load_global_config(config_path)
    assert config.crawl.initial_concurrency == 8
    assert config.gaps.max_concurrent_pages == 2
    assert str(config.state.database) == "/tmp/catalog.db"


def test_empty_file_uses_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "empty.yml"
    config_path.write_text("", encoding="utf-8")

    config = load_global_config(config_path)
    assert config.catalog.base_url == DEFAULT_CATALOG_URL
    assert config.catalog.page_size == 12
    assert config.crawl.retry_cycles == 3


def test_load_global_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CATALOG_BASE_URL", "https://env.example/list/?a=1")
    monkeypatch.setenv("CATALOG_PAGE_SIZE", "24")
    monkeypatch.setenv("CRAWL_ENGINE", "browser")
    monkeypatch.setenv("CRAWL_PAGE_RANGE_LIMIT", "0")
    monkeypatch.setenv("CRAWL_RETRY_CYCLES", "5")
    monkeypatch.setenv("CRAWL_REQUEST_DELAY_MIN_SEC", "0.2")
    monkeypatch.setenv("CRAWL_REQUEST_DELAY_MAX_SEC", "0.4")
    monkeypatch.setenv("GAPS_PRIORITIZE_PARTIAL_PAGES", "false")
    monkeypatch.setenv("NETWORK_USER_AGENTS", "env-agent-1,env-agent-2")
    monkeypatch.setenv("STATE_DATABASE_PATH", "/tmp/env-catalog.db")

    config = load_global_config(None)
    assert config.catalog.base_url == "https://env.example/list/?a=1"
    assert config.catalog.page_size == 24
    assert config.crawl.engine == "browser"
    assert config.crawl.page_range_limit == 0
    assert config.crawl.retry_cycles == 5
    assert config.crawl.request_delay.min_sec == 0.2
    assert config.gaps.prioritize_partial_pages is False
    assert config.network.user_agents == ["env-agent-1", "env-agent-2"]
    assert str(config.state.database) == "/tmp/env-catalog.db"


def test_invalid_env_value_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CRAWL_INITIAL_CONCURRENCY", "many")
    with pytest.raises(ConfigLoaderError):
        load_global_config(None)


def test_unknown_engine_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CRAWL_ENGINE", "curl")
    with pytest.raises(ConfigLoaderError):
        load_global_config(None)


def test_invalid_delay_bounds_raise(tmp_path: Path) -> None:
    payload = _base_payload()
    payload["crawl"]["request_delay"] = {"min_sec": 3, "max_sec": 1}
    config_path = tmp_path / "config.yml"
    config_path.write_text(yaml.safe_dump(payload), encoding="utf-8")

    with pytest.raises(ConfigLoaderError):
        load_global_config(config_path)


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoaderError):
        load_global_config(tmp_path / "absent.yml")
