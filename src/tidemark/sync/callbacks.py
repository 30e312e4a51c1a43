"""
Per-record completion callbacks.

Callbacks passed to ``mutate`` are kept in memory, keyed by
``(collection, primary key)``, and settled when the queue drain resolves the
record. They are never persisted, so callbacks registered before a restart
are not fired afterwards.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple
import inspect

from ..utils.logging import get_logger


logger = get_logger("tidemark.sync.callbacks")

Callback = Callable[..., Any]


async def call_handler(handler: Optional[Callback], *args: Any, event: str = "callback", **context: Any) -> None:
    """Invoke a plain or coroutine callback, logging and swallowing its errors."""
    if handler is None:
        return
    try:
        if inspect.iscoroutinefunction(handler):
            await handler(*args)
        else:
            result = handler(*args)
            if inspect.isawaitable(result):
                await result
    except Exception as e:
        logger.error(
            "handler_error",
            event_type=event,
            handler=getattr(handler, "__name__", repr(handler)),
            error=str(e),
            **context
        )


@dataclass
class PendingCallback:
    on_synced: Optional[Callback] = None
    on_error: Optional[Callback] = None


class PendingCallbacks:
    """Side table of callbacks waiting on a record's drain outcome."""

    def __init__(self):
        self._table: Dict[Tuple[str, Any], List[PendingCallback]] = {}

    def register(
        self,
        collection: str,
        primary_key: Any,
        on_synced: Optional[Callback] = None,
        on_error: Optional[Callback] = None
    ) -> None:
        if on_synced is None and on_error is None:
            return
        self._table.setdefault((collection, primary_key), []).append(
            PendingCallback(on_synced=on_synced, on_error=on_error)
        )

    def pending_for(self, collection: str, primary_key: Any) -> int:
        return len(self._table.get((collection, primary_key), []))

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._table.values())

    async def resolve_synced(self, collection: str, primary_key: Any, record: Dict[str, Any]) -> int:
        """Fire and discard every ``on_synced`` waiting on the record."""
        entries = self._table.pop((collection, primary_key), [])
        for entry in entries:
            await call_handler(
                entry.on_synced, record,
                event="on_synced", collection=collection, primary_key=primary_key
            )
        return len(entries)

    async def resolve_error(self, collection: str, primary_key: Any, error: Exception) -> int:
        """Fire and discard every ``on_error`` waiting on the record."""
        entries = self._table.pop((collection, primary_key), [])
        for entry in entries:
            await call_handler(
                entry.on_error, error,
                event="on_error", collection=collection, primary_key=primary_key
            )
        return len(entries)

    def clear(self) -> None:
        self._table.clear()


__all__ = ['PendingCallbacks', 'PendingCallback', 'call_handler', 'Callback']
