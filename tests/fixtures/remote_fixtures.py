"""
Remote and record fixtures for sync tests.
"""

import asyncio
import copy
from collections import defaultdict, deque
from typing import Any, Deque, Dict, List, Optional, Tuple

from tidemark.storage import MemoryStore
from tidemark.transport import RemoteTransport, TransportResponse
from tidemark.utils.errors import PersistenceError


class FakeRemote(RemoteTransport):
    """Scripted in-process remote implementing the transport contract.

    Served records are filtered by ``timestamp_field > since``. Scripted
    statuses are consumed one per request; once a script runs out the
    default status applies.
    """

    def __init__(self, timestamp_field: str = "updatedAt", default_submit_status: int = 201):
        super().__init__("fake-remote")
        self.timestamp_field = timestamp_field
        self.default_submit_status = default_submit_status
        self.served: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self.raw: Dict[str, Any] = {}
        self.fetch_script: Dict[str, Deque[int]] = defaultdict(deque)
        self.submit_script: Dict[str, Deque[int]] = defaultdict(deque)
        self.fetches: List[Tuple[str, str]] = []
        self.submits: List[Tuple[str, Dict[str, Any]]] = []
        self.gate: Optional[asyncio.Event] = None
        self.closed = False

    def serve(self, url: str, records: List[Dict[str, Any]]) -> None:
        self.served[url] = copy.deepcopy(records)

    def respond(self, url: str, payload: Any) -> None:
        """Return ``payload`` verbatim for every fetch of ``url``."""
        self.raw[url] = copy.deepcopy(payload)

    def script_fetch(self, url: str, statuses: List[int]) -> None:
        self.fetch_script[url].extend(statuses)

    def script_submit(self, url: str, statuses: List[int]) -> None:
        self.submit_script[url].extend(statuses)

    async def fetch(self, url: str, since: str) -> TransportResponse:
        self.fetches.append((url, since))
        if self.gate is not None:
            await self.gate.wait()

        if self.fetch_script[url]:
            status = self.fetch_script[url].popleft()
            if not 200 <= status < 300:
                return TransportResponse(status=status, data=[] if status else None)

        if url in self.raw:
            return TransportResponse(status=200, data=copy.deepcopy(self.raw[url]))

        records = [
            copy.deepcopy(r) for r in self.served[url]
            if r.get(self.timestamp_field) is None or r[self.timestamp_field] > since
        ]
        return TransportResponse(status=200, data=records)

    async def submit(self, url: str, payload: Dict[str, Any]) -> int:
        self.submits.append((url, copy.deepcopy(payload)))
        if self.submit_script[url]:
            return self.submit_script[url].popleft()
        return self.default_submit_status

    async def close(self) -> None:
        self.closed = True


class FailingStore(MemoryStore):
    """Memory store whose writes fail."""

    def __init__(self):
        super().__init__()
        self.write_attempts = 0

    async def replace_collection(self, name, snapshot) -> None:
        self.write_attempts += 1
        raise PersistenceError(f"disk full while writing {name}")


class RecordFixtures:
    """Collection declarations and records for sync tests."""

    TODOS = {
        "name": "todos",
        "primary_key_field": "id",
        "timestamp_field": "updatedAt",
        "read_endpoint": "/todos?after=",
        "create_endpoint": "/todos",
        "update_endpoint": "/todos/update",
    }

    NOTES = {
        "name": "notes",
        "primary_key_field": "meta.id",
        "timestamp_field": "meta.updatedAt",
        "read_endpoint": "/notes",
        "create_endpoint": "/notes",
    }

    @staticmethod
    def todo(key: str, title: str = "todo", updated_at: Optional[str] = None) -> Dict[str, Any]:
        record = {"id": key, "title": title}
        if updated_at is not None:
            record["updatedAt"] = updated_at
        return record
