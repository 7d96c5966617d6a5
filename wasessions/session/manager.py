"""Session manager: the surface callers use to create, query and delete sessions."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
import re
from typing import Any, Optional

from wasessions.config import SessionSettings
from wasessions.errors import ClientActionError, CredentialStoreError, SessionCreateError
from wasessions.jid import USER_SUFFIX, format_group, format_phone
from wasessions.network.client import ClientFactory, ClientOptions
from wasessions.network.connection import Connection
from wasessions.session.machine import Session, SessionOptions
from wasessions.session.merge import DuplicateMerger
from wasessions.session.registry import SessionRegistry
from wasessions.sink import InboundEvent, MessageSink
from wasessions.storage.conversations import ConversationArchive
from wasessions.storage.credentials import CredentialStore
from wasessions.storage.metadata import STATUS_INACTIVE, MetadataStore

LOGGER = logging.getLogger(__name__)

SESSION_INITIATED = "Session initiated"

_SPINTAX = re.compile(r"\[([^\[\]]*)\]")

__all__ = [
    "SESSION_INITIATED",
    "SessionManager",
    "format_group",
    "format_phone",
    "replace_with_random",
]


def replace_with_random(text: str) -> str:
    """Replace every ``[a, b, c]`` group with one randomly chosen item."""

    def _choose(match: re.Match[str]) -> str:
        items = [item.strip() for item in match.group(1).split(",")]
        return random.choice(items)

    return _SPINTAX.sub(_choose, text)


class SessionManager:
    """Owns the registry and every live session of one process."""

    def __init__(
        self,
        settings: SessionSettings,
        *,
        client_factory: ClientFactory,
        credential_store: CredentialStore,
        store: MetadataStore,
        conversations: ConversationArchive,
        sink: MessageSink,
        registry: Optional[SessionRegistry] = None,
    ) -> None:
        self.settings = settings
        self.registry = registry or SessionRegistry(max_retries=settings.max_retries)
        self.credential_store = credential_store
        self.store = store
        self.sink = sink
        self.merger = DuplicateMerger(store=store, conversations=conversations, delete=self.delete)
        self._client_factory = client_factory
        self._sink_tasks: set[asyncio.Task[None]] = set()

    async def create(
        self,
        session_id: str,
        title: Optional[str] = None,
        is_legacy: bool = False,
        options: Optional[SessionOptions] = None,
    ) -> str:
        """Open credentials, connect and register a session.

        Returns as soon as the connection is started; pairing and open/close
        handling continue on the session's event consumer.
        """

        title = title or self.settings.default_title
        options = options or SessionOptions()
        try:
            credentials, save_credentials = await self.credential_store.open(session_id)
        except CredentialStoreError as exc:
            raise SessionCreateError(session_id, str(exc)) from exc

        sync_full_history = options.sync_full_history
        if sync_full_history is None:
            sync_full_history = self.settings.sync_full_history
        client_options = ClientOptions(
            browser=(title, "", ""),
            sync_full_history=sync_full_history,
            connect_timeout_seconds=self.settings.connect_timeout_seconds,
            keep_alive_interval_seconds=self.settings.keep_alive_interval_seconds,
        )
        try:
            client = self._client_factory(credentials, client_options)
            connection = Connection(session_id, client)
            await connection.start()
        except Exception as exc:  # noqa: BLE001
            raise SessionCreateError(session_id, str(exc)) from exc

        session = Session(
            session_id=session_id,
            connection=connection,
            credentials=credentials,
            save_credentials=save_credentials,
            manager=self,
            title=title,
            is_legacy=is_legacy,
            options=options,
        )
        previous = self.registry.put(session_id, session)
        session.start()
        if previous is not None and previous is not session:
            await previous.close()
        LOGGER.info("Session %s initiated", session_id)
        return SESSION_INITIATED

    async def delete(self, session_id: str, is_legacy: bool = False) -> None:
        """Tear a session down and remove its credentials. Safe to repeat."""

        reconnect = self.registry.pop_reconnect(session_id)
        if reconnect is not None and reconnect is not asyncio.current_task() and not reconnect.done():
            reconnect.cancel()
        session = self.registry.remove(session_id)
        if session is not None:
            try:
                await session.close(deleted=True)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Error closing session %s", session_id)
        try:
            await self.credential_store.remove(session_id)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Error removing credentials session=%s", session_id)
        await self.update_metadata(session_id, status=STATUS_INACTIVE)
        LOGGER.info("Session %s deleted", session_id)

    def get(self, session_id: str) -> Optional[Session]:
        return self.registry.get(session_id)

    def exists(self, session_id: str) -> bool:
        return self.registry.exists(session_id)

    def list_chats(self, session_id: str, is_group: bool = False) -> list[Any]:
        """Chats are not retained, so this is always empty."""

        return []

    async def send_message(self, session: Session, receiver: str, message: dict[str, Any]) -> Any:
        client = session.client
        try:
            if message.get("text"):
                preview = None
                try:
                    preview = await client.link_preview(message["text"])
                except Exception:  # noqa: BLE001
                    LOGGER.debug("Link preview failed session=%s", session.session_id, exc_info=True)
                message = {**message, "text": replace_with_random(message["text"])}
                if preview:
                    message["linkPreview"] = preview
            if message.get("caption"):
                message = {**message, "caption": replace_with_random(message["caption"])}
            await asyncio.sleep(self.settings.send_delay_seconds)
            return await client.send_message(receiver, message)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("sendMessage error session=%s receiver=%s", session.session_id, receiver)
            raise ClientActionError(f"Failed to send message to {receiver}") from exc

    async def check_exists(self, session: Session, jid: str, is_group: bool = False) -> bool:
        client = session.client
        try:
            if is_group:
                metadata = await client.group_metadata(jid)
                return bool(metadata.get("id"))
            results = await client.on_whatsapp(jid)
            if not results:
                number = jid.replace(USER_SUFFIX, "")
                results = await client.on_whatsapp(f"+{number}")
            return bool(results and results[0].get("exists"))
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("isExists error session=%s jid=%s", session.session_id, jid)
            raise ClientActionError(f"Failed to look up {jid}") from exc

    async def get_group_data(self, session: Session, jid: str) -> dict[str, Any]:
        try:
            return await session.client.group_metadata(jid)
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("getGroupData error session=%s jid=%s", session.session_id, jid)
            raise ClientActionError(f"Failed to fetch group {jid}") from exc

    async def update_metadata(self, session_id: str, **fields: Any) -> None:
        """Write instance fields; failures are logged and never raised."""

        try:
            await self.store.update(session_id, **fields)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Metadata update failed session=%s fields=%s", session_id, sorted(fields))

    def schedule_reconnect(self, session: Session, delay: float) -> None:
        task = asyncio.create_task(
            self._reconnect(session.session_id, delay, session.title, session.is_legacy, session.options),
            name=f"session-reconnect-{session.session_id}",
        )
        self.registry.set_reconnect(session.session_id, task)

    async def _reconnect(
        self,
        session_id: str,
        delay: float,
        title: str,
        is_legacy: bool,
        options: SessionOptions,
    ) -> None:
        task = asyncio.current_task()
        try:
            await asyncio.sleep(delay)
            await self.create(session_id, title, is_legacy, options)
        except SessionCreateError:
            LOGGER.exception("Reconnect failed session=%s", session_id)
            if self.registry.should_reconnect(session_id):
                self._reschedule(session_id, title, is_legacy, options)
            else:
                await self.delete(session_id, is_legacy)
        finally:
            if task is not None:
                self.registry.clear_reconnect(session_id, task)

    def _reschedule(self, session_id: str, title: str, is_legacy: bool, options: SessionOptions) -> None:
        delay = self.settings.reconnect_delay_seconds
        task = asyncio.create_task(
            self._reconnect(session_id, delay, title, is_legacy, options),
            name=f"session-reconnect-{session_id}",
        )
        self.registry.set_reconnect(session_id, task)

    def dispatch(self, event: InboundEvent) -> None:
        """Hand an inbound event to the sink without waiting for it."""

        task = asyncio.create_task(self._deliver(event), name=f"sink-deliver-{event.session_id}")
        self._sink_tasks.add(task)
        task.add_done_callback(self._sink_tasks.discard)

    async def _deliver(self, event: InboundEvent) -> None:
        try:
            await self.sink.deliver(event)
        except Exception:  # noqa: BLE001
            LOGGER.exception("Message sink delivery failed session=%s kind=%s", event.session_id, event.event_kind)

    async def shutdown(self) -> None:
        """Close every session without deleting credentials so they resume on restart."""

        LOGGER.info("Running cleanup before exit (%s sessions)", len(self.registry))
        for session_id in self.registry.ids():
            reconnect = self.registry.pop_reconnect(session_id)
            if reconnect is not None and not reconnect.done():
                reconnect.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await reconnect
            session = self.registry.remove(session_id)
            if session is not None:
                try:
                    await session.close()
                except Exception:  # noqa: BLE001
                    LOGGER.exception("Error closing session %s", session_id)
        if self._sink_tasks:
            await asyncio.gather(*self._sink_tasks, return_exceptions=True)
        await self.sink.close()
