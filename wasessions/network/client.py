"""Protocol client abstractions for the remote messaging service."""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from wasessions.storage.credentials import CredentialState


class EventKind(str, enum.Enum):
    """Event kinds emitted by a protocol client."""

    CREDS_UPDATE = "creds.update"
    MESSAGES_UPDATE = "messages.update"
    MESSAGES_UPSERT = "messages.upsert"
    CONNECTION_UPDATE = "connection.update"


class DisconnectReason(enum.IntEnum):
    """Close status codes reported by the remote service."""

    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    CONNECTION_REPLACED = 440
    LOGGED_OUT = 401
    BAD_SESSION = 500
    RESTART_REQUIRED = 515
    MULTIDEVICE_MISMATCH = 411
    FORBIDDEN = 403
    UNAVAILABLE_SERVICE = 503


@dataclass(frozen=True)
class ConnectionUpdate:
    """Payload of a ``connection.update`` event."""

    connection: Optional[str] = None
    qr: Optional[str] = None
    status_code: Optional[int] = None


@dataclass(frozen=True)
class ClientEvent:
    kind: EventKind
    payload: Any = None


@dataclass(frozen=True)
class ClientOptions:
    """Connection options handed to the client factory."""

    browser: tuple[str, str, str] = ("Chrome", "", "")
    sync_full_history: bool = False
    connect_timeout_seconds: int = 60
    keep_alive_interval_seconds: int = 10
    mark_online_on_connect: bool = False
    extra: dict[str, Any] = field(default_factory=dict)


class ProtocolClient(ABC):
    """One authenticated connection to the remote messaging service."""

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def receive(self) -> ClientEvent:
        """Wait for the next event; events of one client arrive in order."""

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    async def logout(self) -> None:
        ...

    @property
    @abstractmethod
    def user(self) -> Optional[dict[str, Any]]:
        """Profile of the paired account, once known."""

    @abstractmethod
    async def send_message(self, jid: str, message: dict[str, Any]) -> Any:
        ...

    @abstractmethod
    async def on_whatsapp(self, jid: str) -> list[dict[str, Any]]:
        """Look up whether ``jid`` is a registered account."""

    @abstractmethod
    async def group_metadata(self, jid: str) -> dict[str, Any]:
        ...

    async def link_preview(self, text: str) -> Optional[dict[str, Any]]:
        """Return preview metadata for the first URL in ``text``, if supported."""

        return None


ClientFactory = Callable[[CredentialState, ClientOptions], ProtocolClient]
