"""Remote transport contract"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import uuid


# Status reported when the remote could not be reached at all
NO_CONNECTION = 0


@dataclass
class TransportResponse:
    """Result of a fetch: HTTP-style status plus the decoded body."""
    status: int
    data: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class RemoteTransport(ABC):
    """Abstract base class for remote transports.

    Implementations never raise for per-request failures; unreachable remotes
    and timeouts are reported as :data:`NO_CONNECTION`.
    """

    def __init__(self, name: Optional[str] = None):
        self.name = name or f"{self.__class__.__name__}_{uuid.uuid4().hex[:8]}"
        self._stats: Dict[str, int] = {
            "fetches": 0,
            "submits": 0,
            "errors": 0,
        }

    @abstractmethod
    async def fetch(self, url: str, since: str) -> TransportResponse:
        """Fetch records changed since ``since`` from ``url``."""

    @abstractmethod
    async def submit(self, url: str, payload: Dict[str, Any]) -> int:
        """POST one record; returns the response status."""

    async def close(self) -> None:
        """Release connections. Optional."""

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)


__all__ = ['RemoteTransport', 'TransportResponse', 'NO_CONNECTION']
