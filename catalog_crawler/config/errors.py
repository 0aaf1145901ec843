class ConfigLoaderError(RuntimeError):
    """Ошибка чтения или валидации конфигурации запуска."""
