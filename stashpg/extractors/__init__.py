"""Extractors for the source store."""

from .base import BaseExtractor
from .sqlite_extractor import SQLiteExtractor

__all__ = [
    "BaseExtractor",
    "SQLiteExtractor",
]
