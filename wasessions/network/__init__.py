"""Protocol client adapter (client interface, connection wrapper, dummy client)."""

from wasessions.network.client import (
    ClientEvent,
    ClientFactory,
    ClientOptions,
    ConnectionUpdate,
    DisconnectReason,
    EventKind,
    ProtocolClient,
)
from wasessions.network.connection import Connection, ConnectionError
from wasessions.network.dummy import DummyClient

__all__ = [
    "ClientEvent",
    "ClientFactory",
    "ClientOptions",
    "Connection",
    "ConnectionError",
    "ConnectionUpdate",
    "DisconnectReason",
    "DummyClient",
    "EventKind",
    "ProtocolClient",
]
