"""Process bootstrap: wires stores, sink and manager, then resumes stored sessions."""

from __future__ import annotations

import asyncio
import importlib
import logging
from typing import Optional

from wasessions.config import SessionSettings, get_settings
from wasessions.network.client import ClientFactory
from wasessions.session.manager import SessionManager
from wasessions.session.scanner import BootstrapScanner
from wasessions.sink import LoggingSink, MessageSink, WebhookSink
from wasessions.storage.conversations import ConversationArchive
from wasessions.storage.credentials import CredentialStore
from wasessions.storage.db import create_engine, create_session_factory, init_models
from wasessions.storage.metadata import MetadataStore

LOGGER = logging.getLogger(__name__)
_manager: SessionManager | None = None


def load_client_factory(path: str) -> ClientFactory:
    """Resolve a ``module:attribute`` import path to a client factory."""

    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Client factory must look like 'module:attribute', got {path!r}")
    module = importlib.import_module(module_name)
    try:
        return getattr(module, attribute)
    except AttributeError as exc:
        raise ValueError(f"Module {module_name} has no attribute {attribute}") from exc


def build_sink(settings: SessionSettings) -> MessageSink:
    if settings.sink_webhook_url is None:
        return LoggingSink()
    return WebhookSink(
        str(settings.sink_webhook_url),
        token=settings.sink_webhook_token,
        timeout=settings.sink_webhook_timeout_seconds,
    )


async def setup(settings: Optional[SessionSettings] = None) -> SessionManager:
    """Construct the manager and recreate every session found on disk."""

    global _manager
    settings = settings or get_settings()
    engine = create_engine(settings.database_url)
    await init_models(engine)

    client_factory = load_client_factory(settings.client_factory)
    LOGGER.debug("Initialising session manager with client factory %s", settings.client_factory)
    manager = SessionManager(
        settings,
        client_factory=client_factory,
        credential_store=CredentialStore(settings.sessions_dir, contacts_dir=settings.contacts_dir),
        store=MetadataStore(create_session_factory(engine)),
        conversations=ConversationArchive(settings.conversations_dir),
        sink=build_sink(settings),
    )
    scanner = BootstrapScanner(settings.sessions_dir, manager.create, default_title=settings.default_title)
    await scanner.scan()
    _manager = manager
    return manager


def get_manager() -> SessionManager:
    if _manager is None:
        raise RuntimeError("Session manager is not initialised; call setup() first")
    return _manager


async def serve_forever() -> None:
    """Start the session manager and keep the process alive."""

    await setup()
    try:
        await asyncio.Future()  # block until cancelled
    except asyncio.CancelledError:
        LOGGER.info("Session manager shutdown requested")
        raise
    finally:
        if _manager:
            await _manager.shutdown()
