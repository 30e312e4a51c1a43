"""
Local store contract.

A local store is a durable mapping of collection name to
:class:`~tidemark.models.CollectionSnapshot`. Every mutation rewrites the
full snapshot of one collection. Implementations raise
:class:`~tidemark.utils.errors.PersistenceError` on any failure.
"""

from abc import ABC, abstractmethod
from typing import List

from ..models import CollectionSnapshot


class LocalStore(ABC):
    """Abstract base class for snapshot stores."""

    name: str = "store"

    async def open(self) -> None:
        """Prepare the store for use. Optional."""

    @abstractmethod
    async def load_all(self) -> List[CollectionSnapshot]:
        """Every persisted snapshot."""

    @abstractmethod
    async def replace_collection(self, name: str, snapshot: CollectionSnapshot) -> None:
        """Persist ``snapshot`` as the full state of collection ``name``."""

    @abstractmethod
    async def delete_all_data(self) -> None:
        """Remove every persisted snapshot."""

    async def close(self) -> None:
        """Release resources. Optional."""

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


__all__ = ['LocalStore']
