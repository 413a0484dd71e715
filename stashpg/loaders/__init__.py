"""Loaders for the destination store."""

from .base import BaseLoader, LoadResult
from .postgres_loader import PostgresLoader

__all__ = [
    "BaseLoader",
    "LoadResult",
    "PostgresLoader",
]
