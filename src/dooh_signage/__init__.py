"""
Core package for the DOOH signage client.

Modules expose the building blocks of a screen: the backend WebSocket session,
the camera sampling loop, the shared state store and the REST actions.
"""

from .config import SignageConfig, load_config  # noqa: F401
from .session import ConnectionSession, ConnectionState  # noqa: F401
from .signage import SignageClient  # noqa: F401
from .store import ApplicationState, Store  # noqa: F401
