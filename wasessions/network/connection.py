"""Connection wrapper that owns one protocol client's lifecycle."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import AsyncIterator, Optional

from wasessions.network.client import (
    ClientEvent,
    ConnectionUpdate,
    DisconnectReason,
    EventKind,
    ProtocolClient,
)

LOGGER = logging.getLogger(__name__)


class ConnectionError(RuntimeError):
    """Raised when the protocol client cannot be connected."""


class Connection:
    """Connects a client and exposes its events as one ordered stream."""

    def __init__(self, session_id: str, client: ProtocolClient, *, queue_max: int = 0) -> None:
        self._session_id = session_id
        self._client = client
        self._recv_queue: asyncio.Queue[ClientEvent] = asyncio.Queue(maxsize=max(queue_max, 0))
        self._recv_task: Optional[asyncio.Task[None]] = None
        self._stopped = asyncio.Event()
        self._closed = False

    @property
    def client(self) -> ProtocolClient:
        return self._client

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    async def start(self) -> None:
        """Connect the client and start the receive loop."""

        if self._recv_task and not self._recv_task.done():
            return
        self._stopped.clear()
        try:
            await self._client.connect()
        except Exception as exc:  # noqa: BLE001
            await self._close_client()
            raise ConnectionError(str(exc)) from exc
        self._recv_task = asyncio.create_task(
            self._receive_loop(), name=f"session-recv-{self._session_id}"
        )

    async def stop(self) -> None:
        """Stop the receive loop and close the client. Safe to call repeatedly."""

        self._stopped.set()
        task = self._recv_task
        self._recv_task = None
        if task and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self._close_client()

    async def events(self) -> AsyncIterator[ClientEvent]:
        """Async iterator over inbound client events until the connection stops."""

        while not self._stopped.is_set():
            yield await self._recv_queue.get()

    async def _close_client(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._client.close()
        except Exception:  # noqa: BLE001
            LOGGER.debug("Suppress client close error session=%s", self._session_id, exc_info=True)

    async def _receive_loop(self) -> None:
        while not self._stopped.is_set():
            try:
                event = await self._client.receive()
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("Receive loop error session=%s: %s", self._session_id, exc)
                # Surface the dead socket as a close so the session's retry policy decides.
                await self._recv_queue.put(
                    ClientEvent(
                        kind=EventKind.CONNECTION_UPDATE,
                        payload=ConnectionUpdate(
                            connection="close",
                            status_code=int(DisconnectReason.CONNECTION_LOST),
                        ),
                    )
                )
                return
            await self._recv_queue.put(event)
