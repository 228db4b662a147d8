"""Tests for webhook and system routes."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from tests.fixtures.conversation_fixtures import make_message
from threadbot.config import Settings
from threadbot.core.app_state import build_app_state
from threadbot.main import create_app
from threadbot.schemas.cards import Card

MENTION = {"kind": "mention", "conversation_id": "C1", "author": {"id": "U1"}, "text": "@bot"}
MESSAGE = {
    "kind": "subscribed_message",
    "conversation_id": "C1",
    "author": {"id": "U1"},
    "text": "what can you do?",
}


@pytest.fixture
def app_state(fake_adapter, fake_generation, memory_state):
    return build_app_state(
        settings=Settings(),
        adapters=[fake_adapter],
        generation=fake_generation,
        state=memory_state,
    )


@pytest.fixture
def client(app_state):
    app = create_app(testing=True, app_state=app_state)
    with TestClient(app) as c:
        yield c


def test_unknown_platform_returns_plain_400(client, fake_adapter):
    resp = client.post("/webhooks/discord", json=MENTION)

    assert resp.status_code == 400
    assert resp.text == "Unsupported platform"
    assert fake_adapter.acknowledged == []
    assert fake_adapter.posts == []


def test_failed_verification_returns_403(client, fake_adapter):
    fake_adapter.verified = False

    resp = client.post("/webhooks/fake", json=MENTION)

    assert resp.status_code == 403
    assert fake_adapter.posts == []


def test_invalid_payload_returns_400(client, fake_adapter):
    resp = client.post("/webhooks/fake", content=b"not json")

    assert resp.status_code == 400
    assert fake_adapter.acknowledged == []


def test_unknown_event_kind_returns_400(client):
    resp = client.post("/webhooks/fake", json={"kind": "reaction", "conversation_id": "C1"})

    assert resp.status_code == 400


def test_handshake_answered_without_dispatch(client, fake_adapter):
    resp = client.post("/webhooks/fake", json={"type": "handshake", "challenge": "abc"})

    assert resp.status_code == 200
    assert resp.json() == {"challenge": "abc"}
    assert fake_adapter.acknowledged == []


def test_ignored_update_acknowledged_with_ok(client, fake_adapter):
    resp = client.post("/webhooks/fake", json={"ignore": True})

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}
    assert fake_adapter.acknowledged == []


def test_mention_subscribes_and_follow_up_is_answered(
    client, fake_adapter, fake_generation, memory_state
):
    resp = client.post("/webhooks/fake", json=MENTION)

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}
    [(conversation_id, card)] = fake_adapter.posts
    assert conversation_id == "C1"
    assert isinstance(card, Card)

    fake_adapter.history["C1"] = [make_message("what can you do?")]
    resp = client.post("/webhooks/fake", json=MESSAGE)

    assert resp.status_code == 200
    assert len(fake_adapter.acknowledged) == 2
    assert len(fake_generation.calls) == 1
    assert fake_adapter.streams[0].chunks == ["He", "llo"]


def test_message_before_mention_is_not_answered(
    client, fake_adapter, fake_generation, memory_state, conversation_ref
):
    resp = client.post("/webhooks/fake", json=MESSAGE)

    assert resp.status_code == 200
    assert fake_adapter.streams == []
    assert fake_generation.calls == []
    assert asyncio.run(memory_state.is_subscribed(conversation_ref)) is False


def test_handler_failure_still_returns_ok(client, app_state, fake_adapter):
    @app_state.dispatcher.on_action("explode")
    async def explode(thread, event):
        raise RuntimeError("boom")

    resp = client.post(
        "/webhooks/fake",
        json={"kind": "interaction", "conversation_id": "C1", "action_id": "explode"},
    )

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_health_lists_platforms(client):
    resp = client.get("/system/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "platforms": ["fake"], "state_backend": "memory"}


def test_shutdown_closes_adapters(app_state, fake_adapter):
    app = create_app(testing=True, app_state=app_state)
    with TestClient(app):
        pass

    assert fake_adapter.closed is True
