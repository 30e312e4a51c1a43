"""
Deferred mutation queue.

Caller operations issued while a sync cycle is in flight (or before the engine
is ready) are parked here and replayed in arrival order once the cycle
finishes.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, Tuple

from ..utils.logging import get_logger


logger = get_logger("tidemark.sync.deferred")


@dataclass
class DeferredOperation:
    """A parked caller operation."""
    name: str
    func: Callable[..., Awaitable[Any]]
    args: Tuple[Any, ...] = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)


class DeferredQueue:
    """FIFO of operations waiting for the current cycle to finish."""

    def __init__(self):
        self._ops: Deque[DeferredOperation] = deque()
        self.replaying = False

    def __len__(self) -> int:
        return len(self._ops)

    def enqueue(self, name: str, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> DeferredOperation:
        op = DeferredOperation(name=name, func=func, args=args, kwargs=kwargs)
        self._ops.append(op)
        logger.debug("operation_deferred", operation=name, queued=len(self._ops))
        return op

    async def replay(self) -> int:
        """Run every queued operation in order, including ones queued meanwhile.

        A failing operation is logged and the replay moves on.
        """
        replayed = 0
        self.replaying = True
        try:
            while self._ops:
                op = self._ops.popleft()
                try:
                    await op.func(*op.args, **op.kwargs)
                except Exception as e:
                    logger.error(
                        "deferred_operation_failed",
                        operation=op.name,
                        error=str(e),
                        error_type=type(e).__name__,
                        exc_info=True
                    )
                replayed += 1
        finally:
            self.replaying = False
        if replayed:
            logger.debug("deferred_operations_replayed", count=replayed)
        return replayed

    def clear(self) -> None:
        self._ops.clear()


__all__ = ['DeferredQueue', 'DeferredOperation']
