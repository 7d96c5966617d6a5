"""Per-session state machine driven by protocol client events.

Each session owns one :class:`Connection` and one consumer task that reads the
connection's ordered event stream. Every event kind maps to a transition
method; transitions for a single session therefore never run concurrently.
Two timers may exist per session:

- the QR timer, armed on every QR challenge (cancel-then-schedule) and
  disarmed once the account is paired;
- the reconnect task, owned by the manager's registry so that it outlives
  the session object it replaces.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Union

from wasessions.jid import BROADCAST_JID, USER_SUFFIX, extract_phone_number, owner_id
from wasessions.network.client import (
    ClientEvent,
    ConnectionUpdate,
    DisconnectReason,
    EventKind,
    ProtocolClient,
)
from wasessions.network.connection import Connection
from wasessions.qr import to_data_url
from wasessions.session.state import SessionState, SessionTracker
from wasessions.sink import InboundEvent
from wasessions.storage.credentials import CredentialState, SaveCallback
from wasessions.storage.metadata import STATUS_ACTIVE, STATUS_INACTIVE

if TYPE_CHECKING:
    from wasessions.session.manager import SessionManager

LOGGER = logging.getLogger(__name__)

ORIGIN_QR = "qr"

QrCallback = Callable[[str], Union[None, Awaitable[None]]]


@dataclass
class SessionOptions:
    """Caller options kept across reconnects of the same session."""

    get_pair_code: bool = False
    sync_full_history: Optional[bool] = None
    on_qr: Optional[QrCallback] = None


@dataclass(eq=False)
class Session:
    """One live connection to the messaging service and its lifecycle state."""

    session_id: str
    connection: Connection
    credentials: CredentialState
    save_credentials: SaveCallback
    manager: SessionManager
    title: str = "Chrome"
    is_legacy: bool = False
    options: SessionOptions = field(default_factory=SessionOptions)
    tracker: SessionTracker = field(default_factory=SessionTracker)
    registered: bool = False

    _qr_timer: Optional[asyncio.Task[None]] = field(default=None, init=False, repr=False)
    _consumer_task: Optional[asyncio.Task[None]] = field(default=None, init=False, repr=False)
    _closed: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        self.registered = self.registered or self.credentials.registered

    @property
    def state(self) -> SessionState:
        return self.tracker.state

    @property
    def client(self) -> ProtocolClient:
        return self.connection.client

    @property
    def owner_id(self) -> str:
        return owner_id(self.session_id)

    @property
    def qr_timer_pending(self) -> bool:
        return self._qr_timer is not None and not self._qr_timer.done()

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Begin consuming connection events."""

        if self._consumer_task and not self._consumer_task.done():
            return
        self.tracker.transition(SessionState.CONNECTING)
        self._consumer_task = asyncio.create_task(
            self._consume(), name=f"session-events-{self.session_id}"
        )

    async def close(self, *, deleted: bool = False) -> None:
        """Release timers, the consumer task and the connection. Idempotent."""

        if deleted and self.tracker.can_transition(SessionState.DELETED):
            self.tracker.transition(SessionState.DELETED)
        if self._closed:
            return
        self._closed = True
        self._cancel_qr_timer()
        task = self._consumer_task
        self._consumer_task = None
        if task and task is not asyncio.current_task() and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self.connection.stop()

    async def _consume(self) -> None:
        async for event in self.connection.events():
            try:
                await self.handle(event)
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001
                LOGGER.exception("Session %s failed handling %s", self.session_id, event.kind.value)
            if self.tracker.state.is_closing:
                return

    async def handle(self, event: ClientEvent) -> None:
        if event.kind is EventKind.CREDS_UPDATE:
            await self._on_creds_update(event.payload or {})
        elif event.kind is EventKind.CONNECTION_UPDATE:
            await self._on_connection_update(event.payload or ConnectionUpdate())
        elif event.kind is EventKind.MESSAGES_UPDATE:
            self._on_messages_update(event.payload or [])
        elif event.kind is EventKind.MESSAGES_UPSERT:
            self._on_messages_upsert(event.payload or {})
        else:
            LOGGER.debug("Session %s ignoring event %s", self.session_id, event.kind)

    # Credentials
    async def _on_creds_update(self, update: dict[str, Any]) -> None:
        self.credentials.apply(update)
        try:
            await self.save_credentials()
        except Exception:  # noqa: BLE001
            LOGGER.exception("Credential save failed session=%s", self.session_id)
        if self.credentials.registered and not self.registered:
            LOGGER.info("Session %s paired", self.session_id)
            self._mark_registered()

    def _mark_registered(self) -> None:
        self.registered = True
        self._cancel_qr_timer()

    # Connection lifecycle
    async def _on_connection_update(self, update: ConnectionUpdate) -> None:
        if update.connection == "connecting" and self.state is SessionState.AWAITING_QR:
            self.tracker.transition(SessionState.CONNECTING)
        elif update.connection == "open":
            await self._on_open()
        elif update.connection == "close":
            await self._on_close(update.status_code)
            return
        if update.qr:
            await self._on_qr(update.qr)

    async def _on_open(self) -> None:
        registry = self.manager.registry
        registry.reset_retries(self.session_id)
        self._mark_registered()
        if self.state is not SessionState.OPEN:
            self.tracker.transition(SessionState.OPEN)
        LOGGER.info("Session %s connected", self.session_id)

        profile = self.client.user or self.credentials.me or {}
        jid = profile.get("id")
        number = extract_phone_number(jid)
        await self.manager.update_metadata(
            self.session_id,
            status=STATUS_ACTIVE,
            number=number,
            data=json.dumps(profile, default=str) if jid else None,
        )
        if not number:
            return
        try:
            await self.manager.merger.merge(self.session_id, number, profile)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Duplicate merge failed session=%s number=%s", self.session_id, number)

    async def _on_close(self, status_code: Optional[int]) -> None:
        self._cancel_qr_timer()
        registry = self.manager.registry
        if status_code == DisconnectReason.LOGGED_OUT or not registry.should_reconnect(self.session_id):
            LOGGER.info(
                "Session %s disconnected permanently (status=%s retries=%s)",
                self.session_id,
                status_code,
                registry.retries(self.session_id),
            )
            self.tracker.transition(SessionState.CLOSING_TERMINAL)
            await self.manager.update_metadata(self.session_id, status=STATUS_INACTIVE)
            await self.manager.delete(self.session_id, self.is_legacy)
            return

        settings = self.manager.settings
        if status_code == DisconnectReason.RESTART_REQUIRED:
            delay = settings.restart_delay_seconds
        else:
            delay = settings.reconnect_delay_seconds
        self.tracker.transition(SessionState.CLOSING_RETRY)
        await self.connection.stop()
        LOGGER.info(
            "Reconnecting session %s in %.1fs (attempt %s/%s)",
            self.session_id,
            delay,
            registry.retries(self.session_id),
            registry.max_retries,
        )
        self.manager.schedule_reconnect(self, delay)

    # QR challenge
    async def _on_qr(self, qr: str) -> None:
        if not self.registered and self.tracker.can_transition(SessionState.AWAITING_QR):
            self.tracker.transition(SessionState.AWAITING_QR)
        try:
            image = await asyncio.to_thread(to_data_url, qr)
        except Exception:  # noqa: BLE001
            LOGGER.exception("QR processing error session=%s", self.session_id)
            return
        await self.manager.update_metadata(self.session_id, qr=image)
        callback = self.options.on_qr
        if callback is not None:
            try:
                result = callback(image)
                if inspect.isawaitable(result):
                    await result
            except Exception:  # noqa: BLE001
                LOGGER.exception("QR callback failed session=%s", self.session_id)
        if self.registered:
            LOGGER.debug("Session %s already paired; QR window not armed", self.session_id)
            return
        self._arm_qr_timer()

    def _arm_qr_timer(self) -> None:
        self._cancel_qr_timer()
        window = self.manager.settings.qr_timeout_seconds
        self._qr_timer = asyncio.create_task(
            self._expire_qr(window), name=f"session-qr-timeout-{self.session_id}"
        )

    def _cancel_qr_timer(self) -> None:
        timer = self._qr_timer
        self._qr_timer = None
        if timer is not None and timer is not asyncio.current_task() and not timer.done():
            timer.cancel()

    async def _expire_qr(self, window: float) -> None:
        await asyncio.sleep(window)
        if self._qr_timer is asyncio.current_task():
            self._qr_timer = None
        if self.registered or self._closed:
            return
        if self.manager.registry.get(self.session_id) is not self:
            return
        LOGGER.info("Session %s was not scanned in time; logging out and deleting", self.session_id)
        try:
            await self.client.logout()
        except Exception:  # noqa: BLE001
            LOGGER.exception("Error during logout session=%s", self.session_id)
        finally:
            await self.manager.delete(self.session_id, self.is_legacy)

    # Inbound messages
    def _on_messages_update(self, updates: list[dict[str, Any]]) -> None:
        if not updates:
            return
        message = updates[0]
        update = message.get("update") or {}
        remote_jid = (message.get("key") or {}).get("remoteJid")
        if update.get("pollUpdates"):
            # No message store is kept, so there is no poll creation to aggregate votes against.
            LOGGER.debug("Poll update received session=%s jid=%s", self.session_id, remote_jid)
            return
        if update and remote_jid != BROADCAST_JID and update.get("status"):
            self._forward(message, "update")

    def _on_messages_upsert(self, batch: dict[str, Any]) -> None:
        messages = batch.get("messages") or []
        if not messages:
            return
        message = messages[0]
        remote_jid = (message.get("key") or {}).get("remoteJid") or ""
        if remote_jid == BROADCAST_JID or batch.get("type") != "notify":
            return
        if remote_jid.endswith(USER_SUFFIX):
            self._forward(message, "upsert")

    def _forward(self, body: dict[str, Any], event_kind: str) -> None:
        uid = self.owner_id
        if not uid:
            return
        self.manager.dispatch(
            InboundEvent(
                body=body,
                owner_id=uid,
                origin=ORIGIN_QR,
                session_id=self.session_id,
                event_kind=event_kind,
            )
        )
