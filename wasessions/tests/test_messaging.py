import asyncio

import pytest

from wasessions.errors import ClientActionError
from wasessions.network.client import EventKind
from wasessions.session.manager import format_group, format_phone, replace_with_random


def _upsert(remote_jid: str, kind: str = "notify") -> dict:
    return {"type": kind, "messages": [{"key": {"remoteJid": remote_jid, "id": "ABC"}, "message": {"conversation": "hi"}}]}


@pytest.mark.asyncio
async def test_inbound_messages_are_filtered_and_forwarded(manager, recorder, sink):
    await manager.create("u1_a")
    client = recorder.latest

    client.emit(EventKind.MESSAGES_UPSERT, _upsert("5551234567@s.whatsapp.net"))
    event = await asyncio.wait_for(sink.queue.get(), timeout=1)
    assert event.event_kind == "upsert"
    assert event.owner_id == "u1"
    assert event.session_id == "u1_a"
    assert event.origin == "qr"
    assert event.body["key"]["remoteJid"] == "5551234567@s.whatsapp.net"

    client.emit(EventKind.MESSAGES_UPSERT, _upsert("120363@g.us"))
    client.emit(EventKind.MESSAGES_UPSERT, _upsert("status@broadcast"))
    client.emit(EventKind.MESSAGES_UPSERT, _upsert("5551234567@s.whatsapp.net", kind="append"))
    client.emit(
        EventKind.MESSAGES_UPDATE,
        [{"key": {"remoteJid": "5551234567@s.whatsapp.net"}, "update": {"pollUpdates": [{"vote": 1}]}}],
    )
    client.emit(EventKind.MESSAGES_UPDATE, [{"key": {"remoteJid": "status@broadcast"}, "update": {"status": 3}}])
    client.emit(EventKind.MESSAGES_UPDATE, [{"key": {"remoteJid": "5551234567@s.whatsapp.net"}, "update": {}}])
    client.emit(EventKind.MESSAGES_UPDATE, [{"key": {"remoteJid": "5551234567@s.whatsapp.net"}, "update": {"status": 4}}])

    event = await asyncio.wait_for(sink.queue.get(), timeout=1)
    assert event.event_kind == "update"
    assert event.body["update"] == {"status": 4}
    await asyncio.sleep(0.05)
    assert sink.queue.empty()


@pytest.mark.asyncio
async def test_sink_failure_does_not_stop_session(manager, recorder, sink, monkeypatch, wait_until):
    calls: list[str] = []

    async def _broken(event):
        calls.append(event.event_kind)
        raise RuntimeError("sink offline")

    monkeypatch.setattr(sink, "deliver", _broken)
    await manager.create("u1_a")
    client = recorder.latest

    client.emit(EventKind.MESSAGES_UPSERT, _upsert("5551234567@s.whatsapp.net"))
    client.emit(EventKind.CREDS_UPDATE, {"registered": True})

    session = manager.get("u1_a")
    await wait_until(lambda: session.registered and calls == ["upsert"])


@pytest.mark.asyncio
async def test_send_message_expands_spintax_and_adds_preview(manager, recorder, monkeypatch):
    await manager.create("u1_a")
    session = manager.get("u1_a")
    client = recorder.latest

    async def _preview(text):
        return {"matched-text": "https://example.com", "title": "Example"}

    monkeypatch.setattr(client, "link_preview", _preview)
    result = await manager.send_message(
        session, "5551234567@s.whatsapp.net", {"text": "[Hi, Hello] there https://example.com"}
    )

    jid, message = client.sent[0]
    assert jid == "5551234567@s.whatsapp.net"
    assert message["text"] in {"Hi there https://example.com", "Hello there https://example.com"}
    assert message["linkPreview"]["title"] == "Example"
    assert result["key"]["remoteJid"] == jid


@pytest.mark.asyncio
async def test_send_message_expands_caption(manager, recorder):
    await manager.create("u1_a")
    session = manager.get("u1_a")

    await manager.send_message(session, "5551234567@s.whatsapp.net", {"image": {"url": "x.png"}, "caption": "[a]"})

    _, message = recorder.latest.sent[0]
    assert message == {"image": {"url": "x.png"}, "caption": "a"}


@pytest.mark.asyncio
async def test_send_message_failure_raises(manager, recorder, monkeypatch):
    await manager.create("u1_a")
    session = manager.get("u1_a")

    async def _fail(jid, message):
        raise RuntimeError("socket closed")

    monkeypatch.setattr(recorder.latest, "send_message", _fail)
    with pytest.raises(ClientActionError):
        await manager.send_message(session, "5551234567@s.whatsapp.net", {"text": "hello"})


@pytest.mark.asyncio
async def test_check_exists_retries_with_plus_prefix(manager, recorder):
    await manager.create("u1_a")
    session = manager.get("u1_a")
    client = recorder.latest
    client.known_jids.add("+5551234567")

    assert await manager.check_exists(session, "5551234567@s.whatsapp.net")
    assert not await manager.check_exists(session, "5550000000@s.whatsapp.net")


@pytest.mark.asyncio
async def test_check_exists_for_groups(manager, recorder):
    await manager.create("u1_a")
    session = manager.get("u1_a")
    client = recorder.latest
    client.groups["120363-555@g.us"] = {"id": "120363-555@g.us", "subject": "Team"}

    assert await manager.check_exists(session, "120363-555@g.us", is_group=True)
    assert (await manager.get_group_data(session, "120363-555@g.us"))["subject"] == "Team"
    with pytest.raises(ClientActionError):
        await manager.check_exists(session, "999@g.us", is_group=True)
    with pytest.raises(ClientActionError):
        await manager.get_group_data(session, "999@g.us")


@pytest.mark.asyncio
async def test_list_chats_is_empty(manager):
    await manager.create("u1_a")

    assert manager.list_chats("u1_a") == []
    assert manager.list_chats("u1_a", is_group=True) == []


def test_replace_with_random_picks_one_option():
    assert replace_with_random("plain text") == "plain text"
    assert replace_with_random("[only]") == "only"
    assert replace_with_random("[a, b] and [c,d]") in {"a and c", "a and d", "b and c", "b and d"}


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("+1 (555) 123-4567", "15551234567@s.whatsapp.net"),
        ("5551234567", "5551234567@s.whatsapp.net"),
        ("5551234567@s.whatsapp.net", "5551234567@s.whatsapp.net"),
    ],
)
def test_format_phone(raw, expected):
    assert format_phone(raw) == expected
    assert format_phone(format_phone(raw)) == expected


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("120363-555", "120363-555@g.us"),
        ("group 120363-555!", "120363-555@g.us"),
        ("120363-555@g.us", "120363-555@g.us"),
    ],
)
def test_format_group(raw, expected):
    assert format_group(raw) == expected
    assert format_group(format_group(raw)) == expected
