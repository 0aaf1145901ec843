"""Инкрементальный сборщик каталога с плавающей пагинацией."""

__version__ = "0.1.0"
