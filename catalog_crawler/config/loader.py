from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import ValidationError

from catalog_crawler.config.env_loader import load_global_config_from_env
from catalog_crawler.config.errors import ConfigLoaderError
from catalog_crawler.config.models import GlobalConfig
from catalog_crawler.logger import get_logger

logger = get_logger(__name__)


def load_global_config(path: Path | None) -> GlobalConfig:
    """Загружает конфигурацию из файла (YAML/JSON) или из окружения."""
    if path:
        return _load_global_config_from_file(path)
    logger.info("Конфигурация читается из переменных окружения")
    try:
        return load_global_config_from_env()
    except ValidationError as exc:
        raise ConfigLoaderError(f"Некорректные переменные окружения: {exc}") from exc


def _load_global_config_from_file(path: Path) -> GlobalConfig:
    try:
        # JSON является подмножеством YAML, поэтому хватает одного парсера.
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigLoaderError(f"Файл {path} не найден") from exc
    except yaml.YAMLError as exc:
        raise ConfigLoaderError(f"Не удалось разобрать {path}: {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigLoaderError(f"Файл {path} должен содержать объект верхнего уровня")
    try:
        config = GlobalConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigLoaderError(f"Некорректная конфигурация: {exc}") from exc
    logger.info("Конфигурация загружена", extra={"path": str(path)})
    return config
