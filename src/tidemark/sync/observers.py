"""
Observer registry: subscribers notified after every completed sync cycle.
"""

from typing import Any, List

from .callbacks import Callback, call_handler
from ..utils.logging import get_logger


logger = get_logger("tidemark.sync.observers")


class ObserverRegistry:
    """Ordered list of cycle observers."""

    def __init__(self):
        self._observers: List[Callback] = []

    def subscribe(self, observer: Callback) -> None:
        if observer not in self._observers:
            self._observers.append(observer)
            logger.debug("observer_subscribed", observer=getattr(observer, "__name__", repr(observer)))

    def unsubscribe(self, observer: Callback) -> bool:
        try:
            self._observers.remove(observer)
        except ValueError:
            return False
        logger.debug("observer_unsubscribed", observer=getattr(observer, "__name__", repr(observer)))
        return True

    def __len__(self) -> int:
        return len(self._observers)

    def __contains__(self, observer: object) -> bool:
        return observer in self._observers

    async def notify(self, result: Any) -> None:
        # Copy so observers may unsubscribe themselves
        for observer in list(self._observers):
            await call_handler(observer, result, event="sync_completed")


__all__ = ['ObserverRegistry']
