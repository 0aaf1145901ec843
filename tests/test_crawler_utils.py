from catalog_crawler.config.models import DelayConfig
from catalog_crawler.crawler.utils import build_page_url, jitter_delay, normalize_url


def test_build_page_url_keeps_repeated_params() -> None:
    url = build_page_url(
        "https://catalog.example/products/?p_keywords=&p_type%5B%5D=14&p_type%5B%5D=15",
        "paged",
        7,
    )
    assert url == (
        "https://catalog.example/products/?p_keywords=&p_type%5B%5D=14"
        "&p_type%5B%5D=15&paged=7"
    )


def test_build_page_url_replaces_existing_page_param() -> None:
    url = build_page_url("https://catalog.example/list/?paged=2&q=x", "paged", 3)
    assert url == "https://catalog.example/list/?q=x&paged=3"


def test_normalize_url_makes_absolute_and_drops_fragment() -> None:
    url = normalize_url(" /products/p-1/#specs ", "https://catalog.example/products/?paged=2")
    assert url == "https://catalog.example/products/p-1/"


def test_jitter_delay_within_bounds() -> None:
    delay = DelayConfig(min_sec=0.1, max_sec=0.2)
    for _ in range(50):
        assert 0.1 <= jitter_delay(delay) <= 0.2
    assert jitter_delay(DelayConfig()) == 0.0
