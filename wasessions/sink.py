"""Message sinks receiving inbound events forwarded by sessions."""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Optional

import requests

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class InboundEvent:
    body: Any
    owner_id: str
    origin: str
    session_id: str
    event_kind: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class MessageSink(ABC):
    """Downstream consumer of inbound message events."""

    @abstractmethod
    async def deliver(self, event: InboundEvent) -> None:
        ...

    async def close(self) -> None:
        return None


class LoggingSink(MessageSink):
    async def deliver(self, event: InboundEvent) -> None:
        LOGGER.info(
            "Inbound %s event session=%s owner=%s", event.event_kind, event.session_id, event.owner_id
        )


class QueueSink(MessageSink):
    """Buffers events in an ``asyncio.Queue`` for an in-process consumer."""

    def __init__(self, maxsize: int = 0) -> None:
        self.queue: asyncio.Queue[InboundEvent] = asyncio.Queue(maxsize=maxsize)

    async def deliver(self, event: InboundEvent) -> None:
        await self.queue.put(event)


class WebhookSinkError(RuntimeError):
    """Raised when the webhook rejects a delivery."""


class WebhookSink(MessageSink):
    """POSTs each event as JSON to a configured endpoint."""

    def __init__(self, url: str, *, token: Optional[str] = None, timeout: float = 10.0) -> None:
        self._url = url
        self._timeout = timeout
        self._session = requests.Session()
        self._session.headers["Content-Type"] = "application/json"
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"

    async def deliver(self, event: InboundEvent) -> None:
        body = json.dumps(event.to_dict(), default=str)
        await asyncio.to_thread(self._post, body)

    def _post(self, body: str) -> None:
        response = self._session.post(self._url, data=body, timeout=self._timeout)
        if response.status_code >= 400:
            raise WebhookSinkError(f"Webhook returned {response.status_code}: {response.text[:200]}")

    async def close(self) -> None:
        self._session.close()
