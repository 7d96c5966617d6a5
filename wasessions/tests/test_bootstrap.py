import json

import pytest

from wasessions import bootstrap
from wasessions.config import SessionSettings
from wasessions.network.dummy import DummyClient
from wasessions.session.scanner import BootstrapScanner
from wasessions.sink import InboundEvent, LoggingSink, WebhookSink, WebhookSinkError


@pytest.mark.asyncio
async def test_scanner_creates_sessions_for_credential_areas(tmp_path):
    sessions_dir = tmp_path / "sessions"
    for name in ("md_u1_a.json", "md_u2_b.json", "md_u1_a_store.json", "md_broken.json", "backups"):
        (sessions_dir / name).mkdir(parents=True)
    (sessions_dir / "md_u3_c.json").write_text("{}", encoding="utf-8")
    calls: list[tuple] = []

    async def _create(session_id, title, is_legacy):
        calls.append((session_id, title, is_legacy))
        if session_id == "broken":
            raise RuntimeError("connect refused")
        return "Session initiated"

    started = await BootstrapScanner(sessions_dir, _create, default_title="Firefox").scan()

    assert sorted(calls) == [("broken", "Firefox", False), ("u1_a", "Firefox", False), ("u2_b", "Firefox", False)]
    assert sorted(started) == ["u1_a", "u2_b"]


@pytest.mark.asyncio
async def test_scanner_without_directory(tmp_path):
    async def _create(session_id, title, is_legacy):
        raise AssertionError("no sessions expected")

    assert await BootstrapScanner(tmp_path / "missing", _create).scan() == []


def test_settings_load_yaml_file(tmp_path, monkeypatch):
    config = tmp_path / "sessions.yaml"
    config.write_text("max_retries: 3\nqr_timeout_seconds: 30\nlog_level: debug\n", encoding="utf-8")
    monkeypatch.setenv("WA_SESSIONS_CONFIG_FILE", str(config))

    settings = SessionSettings()

    assert settings.max_retries == 3
    assert settings.qr_timeout_seconds == 30
    assert settings.log_level == "DEBUG"
    assert settings.config_path == config
    assert settings.default_title == "Chrome"


def test_settings_reject_non_mapping_file(tmp_path, monkeypatch):
    config = tmp_path / "sessions.yaml"
    config.write_text("- just\n- a list\n", encoding="utf-8")
    monkeypatch.setenv("WA_SESSIONS_CONFIG_FILE", str(config))

    with pytest.raises(ValueError):
        SessionSettings()


def test_load_client_factory():
    assert bootstrap.load_client_factory("wasessions.network.dummy:DummyClient") is DummyClient
    with pytest.raises(ValueError):
        bootstrap.load_client_factory("wasessions.network.dummy")
    with pytest.raises(ValueError):
        bootstrap.load_client_factory("wasessions.network.dummy:Missing")


def test_build_sink_picks_webhook_when_configured(settings):
    assert isinstance(bootstrap.build_sink(settings), LoggingSink)

    configured = settings.model_copy(update={"sink_webhook_url": "https://hooks.example.com/inbound"})
    assert isinstance(bootstrap.build_sink(configured), WebhookSink)


@pytest.mark.asyncio
async def test_setup_resumes_stored_sessions(settings):
    (settings.sessions_dir / "md_u1_a.json").mkdir(parents=True)

    manager = await bootstrap.setup(settings)
    try:
        assert bootstrap.get_manager() is manager
        assert manager.exists("u1_a")
        assert isinstance(manager.get("u1_a").client, DummyClient)
    finally:
        await manager.shutdown()


class _Response:
    def __init__(self, status_code: int, text: str = "") -> None:
        self.status_code = status_code
        self.text = text


@pytest.mark.asyncio
async def test_webhook_sink_posts_json(monkeypatch):
    sink = WebhookSink("https://hooks.example.com/inbound", token="secret")
    posted = []

    def _post(url, data=None, timeout=None):
        posted.append((url, json.loads(data), timeout))
        return _Response(200)

    monkeypatch.setattr(sink._session, "post", _post)
    event = InboundEvent(body={"key": {"id": "1"}}, owner_id="u1", origin="qr", session_id="u1_a", event_kind="upsert")

    await sink.deliver(event)
    await sink.close()

    url, body, timeout = posted[0]
    assert url == "https://hooks.example.com/inbound"
    assert body["session_id"] == "u1_a"
    assert body["event_kind"] == "upsert"
    assert timeout == 10.0
    assert sink._session.headers["Authorization"] == "Bearer secret"


@pytest.mark.asyncio
async def test_webhook_sink_raises_on_rejection(monkeypatch):
    sink = WebhookSink("https://hooks.example.com/inbound")
    monkeypatch.setattr(sink._session, "post", lambda url, data=None, timeout=None: _Response(502, "bad gateway"))
    event = InboundEvent(body={}, owner_id="u1", origin="qr", session_id="u1_a", event_kind="update")

    with pytest.raises(WebhookSinkError):
        await sink.deliver(event)
