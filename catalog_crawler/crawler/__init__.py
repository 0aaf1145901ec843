"""Обход страниц списка каталога."""
