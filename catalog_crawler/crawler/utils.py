from __future__ import annotations

import random
from urllib.parse import parse_qsl, urldefrag, urlencode, urljoin, urlparse, urlunparse

from catalog_crawler.config.models import DelayConfig, NetworkConfig


def build_page_url(base_url: str, param_name: str, page_number: int) -> str:
    """Добавляет номер страницы в query, сохраняя остальные (в т.ч. повторяющиеся) параметры."""
    parsed = urlparse(base_url)
    query = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if key != param_name
    ]
    query.append((param_name, str(page_number)))
    return urlunparse(
        (
            parsed.scheme,
            parsed.netloc,
            parsed.path,
            parsed.params,
            urlencode(query),
            parsed.fragment,
        )
    )


def normalize_url(raw_url: str, base_url: str | None) -> str:
    """Абсолютный URL карточки без якоря."""
    absolute = urljoin(base_url or "", raw_url.strip())
    return urldefrag(absolute).url


def pick_user_agent(network: NetworkConfig) -> str:
    return random.choice(network.user_agents)


def jitter_delay(delay: DelayConfig) -> float:
    """Случайная длительность паузы в пределах ``delay``."""
    return random.uniform(delay.min_sec, delay.max_sec)
