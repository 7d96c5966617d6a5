"""In-process protocol client for offline runs and testing."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from wasessions.network.client import (
    ClientEvent,
    ClientOptions,
    ConnectionUpdate,
    EventKind,
    ProtocolClient,
)
from wasessions.storage.credentials import CredentialState

LOGGER = logging.getLogger(__name__)


class DummyClient(ProtocolClient):
    """Client whose events are injected by the caller instead of a socket."""

    def __init__(self, credentials: CredentialState, options: Optional[ClientOptions] = None) -> None:
        self.credentials = credentials
        self.options = options or ClientOptions()
        self.connected = False
        self.closed = False
        self.logged_out = False
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self.known_jids: set[str] = set()
        self.groups: dict[str, dict[str, Any]] = {}
        self.profile: Optional[dict[str, Any]] = None
        self._events: asyncio.Queue[ClientEvent] = asyncio.Queue()

    async def connect(self) -> None:
        LOGGER.debug("Dummy client connect()")
        self.connected = True

    async def receive(self) -> ClientEvent:
        return await self._events.get()

    async def close(self) -> None:
        LOGGER.debug("Dummy client close()")
        self.connected = False
        self.closed = True

    async def logout(self) -> None:
        LOGGER.debug("Dummy client logout()")
        self.logged_out = True

    @property
    def user(self) -> Optional[dict[str, Any]]:
        return self.profile

    async def send_message(self, jid: str, message: dict[str, Any]) -> Any:
        self.sent.append((jid, message))
        return {"key": {"remoteJid": jid, "id": f"dummy-{len(self.sent)}"}}

    async def on_whatsapp(self, jid: str) -> list[dict[str, Any]]:
        if jid in self.known_jids:
            return [{"jid": jid, "exists": True}]
        return []

    async def group_metadata(self, jid: str) -> dict[str, Any]:
        if jid not in self.groups:
            raise LookupError(f"group {jid} not found")
        return self.groups[jid]

    # Event injection
    def emit(self, kind: EventKind, payload: Any = None) -> None:
        self._events.put_nowait(ClientEvent(kind=kind, payload=payload))

    def emit_connection(
        self,
        connection: Optional[str] = None,
        *,
        qr: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        self.emit(
            EventKind.CONNECTION_UPDATE,
            ConnectionUpdate(connection=connection, qr=qr, status_code=status_code),
        )
