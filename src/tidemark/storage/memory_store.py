"""
In-process snapshot store for tests and ephemeral engines.
"""

from typing import Dict, List
import copy

from .base import LocalStore
from ..models import CollectionSnapshot


class MemoryStore(LocalStore):
    """Snapshots kept in a dict for the life of the process."""

    name = "memory"

    def __init__(self):
        self._snapshots: Dict[str, CollectionSnapshot] = {}

    async def load_all(self) -> List[CollectionSnapshot]:
        return [copy.deepcopy(s) for s in self._snapshots.values()]

    async def replace_collection(self, name: str, snapshot: CollectionSnapshot) -> None:
        self._snapshots[name] = copy.deepcopy(snapshot)

    async def delete_all_data(self) -> None:
        self._snapshots.clear()

    def __contains__(self, name: object) -> bool:
        return name in self._snapshots

    def snapshot(self, name: str) -> CollectionSnapshot:
        return copy.deepcopy(self._snapshots[name])


__all__ = ['MemoryStore']
