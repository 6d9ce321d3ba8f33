"""Writers for the target document store."""

from .base import BaseLoader, LoadResult
from .mongo_loader import MongoLoader
from .memory_loader import MemoryLoader

__all__ = [
    "BaseLoader",
    "LoadResult",
    "MongoLoader",
    "MemoryLoader",
]
