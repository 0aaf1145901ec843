from .storage import ProductStore

__all__ = ["ProductStore"]
