"""Wire models, backend REST client and the local status API."""

from .backend import BackendClient, BackendError
from .schemas import ProtocolError, parse_inbound, parse_stats_response

__all__ = [
    "BackendClient",
    "BackendError",
    "ProtocolError",
    "parse_inbound",
    "parse_stats_response",
]
