"""Remote transports for Tidemark"""

from .base import RemoteTransport, TransportResponse, NO_CONNECTION
from .http import HTTPTransport

__all__ = [
    'RemoteTransport',
    'TransportResponse',
    'NO_CONNECTION',
    'HTTPTransport',
]
