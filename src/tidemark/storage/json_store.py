"""
JSON file snapshot store.

One ``<name>.json`` file per collection inside a directory. Writes go to a
temporary file first and are moved into place with ``os.replace``.
"""

from pathlib import Path
from typing import List
from urllib.parse import quote, unquote
import asyncio
import json
import uuid

import aiofiles
import aiofiles.os

from .base import LocalStore
from ..models import CollectionSnapshot
from ..utils.errors import PersistenceError, error_context
from ..utils.logging import get_logger, log_function_call


logger = get_logger("tidemark.storage.json")

SUFFIX = ".json"


class JSONFileStore(LocalStore):
    """Directory of per-collection JSON files."""

    name = "json"

    def __init__(self, directory: Path | str):
        self.directory = Path(directory)
        self._lock = asyncio.Lock()

    def _file_for(self, name: str) -> Path:
        return self.directory / f"{quote(name, safe='')}{SUFFIX}"

    async def open(self) -> None:
        with error_context("json_store", "open", PersistenceError, path=str(self.directory)):
            await aiofiles.os.makedirs(self.directory, exist_ok=True)

    @log_function_call(logger)
    async def load_all(self) -> List[CollectionSnapshot]:
        async with self._lock:
            with error_context("json_store", "load_all", PersistenceError):
                if not await aiofiles.os.path.isdir(self.directory):
                    return []
                snapshots = []
                for path in sorted(self.directory.glob(f"*{SUFFIX}")):
                    async with aiofiles.open(path, 'r', encoding='utf-8') as f:
                        content = await f.read()
                    data = json.loads(content)
                    data.setdefault("name", unquote(path.stem))
                    snapshots.append(CollectionSnapshot.from_dict(data))
                return snapshots

    @log_function_call(logger)
    async def replace_collection(self, name: str, snapshot: CollectionSnapshot) -> None:
        async with self._lock:
            with error_context("json_store", "replace_collection", PersistenceError, collection=name):
                await aiofiles.os.makedirs(self.directory, exist_ok=True)
                target = self._file_for(name)
                temp = target.with_name(f".{target.name}.{uuid.uuid4().hex[:8]}.tmp")
                async with aiofiles.open(temp, 'w', encoding='utf-8') as f:
                    await f.write(json.dumps(snapshot.to_dict(), separators=(',', ':')))
                await aiofiles.os.replace(temp, target)

    @log_function_call(logger)
    async def delete_all_data(self) -> None:
        async with self._lock:
            with error_context("json_store", "delete_all_data", PersistenceError):
                if not await aiofiles.os.path.isdir(self.directory):
                    return
                for path in self.directory.glob(f"*{SUFFIX}"):
                    await aiofiles.os.remove(path)
        logger.info("json_store_cleared", path=str(self.directory))


__all__ = ['JSONFileStore']
