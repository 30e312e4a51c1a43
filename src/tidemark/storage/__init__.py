"""
Storage components for Tidemark.

This package provides local snapshot stores with:
- SQLite persistence (aiosqlite)
- JSON file persistence (aiofiles)
- An in-memory store
"""

from pathlib import Path

from .base import LocalStore
from .json_store import JSONFileStore
from .memory_store import MemoryStore
from .sqlite_store import SQLiteStore
from ..utils.config import StorageConfig
from ..utils.errors import ConfigurationError


def create_store(config: StorageConfig) -> LocalStore:
    """Build the store selected by ``config.backend``."""
    if config.backend == "sqlite":
        return SQLiteStore(config.path)
    if config.backend == "json":
        # A file-like default path names the directory after its stem
        path = Path(config.path)
        directory = path.parent / path.stem if path.suffix else path
        return JSONFileStore(directory)
    if config.backend == "memory":
        return MemoryStore()
    raise ConfigurationError(f"Unknown storage backend: {config.backend}")


__all__ = [
    'LocalStore',
    'SQLiteStore',
    'JSONFileStore',
    'MemoryStore',
    'create_store',
]
