import asyncio
from typing import Callable

import pytest
import pytest_asyncio

from wasessions.config import SessionSettings
from wasessions.network.client import ClientOptions
from wasessions.network.dummy import DummyClient
from wasessions.session.manager import SessionManager
from wasessions.sink import QueueSink
from wasessions.storage.conversations import ConversationArchive
from wasessions.storage.credentials import CredentialState, CredentialStore
from wasessions.storage.db import create_engine, create_session_factory, init_models
from wasessions.storage.metadata import MetadataStore


class ClientRecorder:
    """Client factory that keeps every ``DummyClient`` it builds."""

    def __init__(self) -> None:
        self.clients: list[DummyClient] = []
        self.options: list[ClientOptions] = []
        self.fail = False

    def __call__(self, credentials: CredentialState, options: ClientOptions) -> DummyClient:
        if self.fail:
            raise ConnectionRefusedError("remote refused the connection")
        client = DummyClient(credentials, options)
        self.clients.append(client)
        self.options.append(options)
        return client

    @property
    def latest(self) -> DummyClient:
        return self.clients[-1]


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def settings(tmp_path):
    return SessionSettings(
        sessions_dir=tmp_path / "sessions",
        conversations_dir=tmp_path / "conversations",
        contacts_dir=tmp_path / "contacts",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'meta.db'}",
        reconnect_delay_seconds=0.01,
        restart_delay_seconds=0.0,
        qr_timeout_seconds=0.2,
        send_delay_seconds=0.0,
    )


@pytest_asyncio.fixture
async def metadata_store(settings):
    engine = create_engine(settings.database_url)
    await init_models(engine)
    yield MetadataStore(create_session_factory(engine))
    await engine.dispose()


@pytest.fixture
def recorder():
    return ClientRecorder()


@pytest.fixture
def sink():
    return QueueSink()


@pytest_asyncio.fixture
async def manager(settings, metadata_store, recorder, sink):
    manager = SessionManager(
        settings,
        client_factory=recorder,
        credential_store=CredentialStore(settings.sessions_dir, contacts_dir=settings.contacts_dir),
        store=metadata_store,
        conversations=ConversationArchive(settings.conversations_dir),
        sink=sink,
    )
    yield manager
    await manager.shutdown()


@pytest.fixture
def wait_until():
    return wait_for
