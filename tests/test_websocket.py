"""End-to-end tests for the live channel endpoint."""

from uuid import uuid4

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from speaker_portal.api.app import create_app
from speaker_portal.realtime.gateway import AUTH_FAILURE_CODE


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.mark.parametrize("query", ["", "?token=", "?token=not-a-jwt"])
def test_handshake_without_valid_token_is_closed(app, query):
    with TestClient(app) as client:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"/ws{query}"):
                pass
        assert exc_info.value.code == AUTH_FAILURE_CODE
        assert len(app.state.portal.registry) == 0


def test_token_for_unknown_user_is_closed(app, make_token):
    with TestClient(app) as client:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"/ws?token={make_token(uuid4())}"):
                pass
        assert exc_info.value.code == AUTH_FAILURE_CODE


def test_live_message_flow(app, make_token, new_user):
    """Receiver joins its rooms, then gets the room event and the personal ping."""
    store = app.state.portal.store
    with TestClient(app) as client:
        alice = client.portal.call(new_user, store, "Alice")
        bob = client.portal.call(new_user, store, "Bob")
        alice_headers = {"Authorization": f"Bearer {make_token(alice.id)}"}

        response = client.post(
            "/messages/send",
            json={"receiver_id": str(bob.id), "content": "First"},
            headers=alice_headers,
        )
        conversation_id = response.json()["data"]["conversation_id"]

        with client.websocket_connect(f"/ws?token={make_token(bob.id)}") as bob_ws:
            bob_ws.send_json({"type": "join_conversations"})
            ack = bob_ws.receive_json()
            assert app.state.portal.registry.is_online(bob.id)
            assert ack["type"] == "rooms_joined"
            assert ack["payload"]["conversation_ids"] == [conversation_id]

            response = client.post(
                "/messages/send",
                json={"receiver_id": str(bob.id), "content": "Are you on stage?"},
                headers=alice_headers,
            )
            assert response.status_code == 201

            events = {}
            for _ in range(2):
                event = bob_ws.receive_json()
                events[event["type"]] = event
            assert set(events) == {"new_message", "message_notification"}
            assert events["new_message"]["payload"]["message"]["content"] == "Are you on stage?"
            assert events["message_notification"]["payload"]["sender"]["name"] == "Alice"


def test_typing_and_frame_errors(app, make_token, new_user):
    store = app.state.portal.store
    with TestClient(app) as client:
        alice = client.portal.call(new_user, store, "Alice")
        bob = client.portal.call(new_user, store, "Bob")
        response = client.post(
            "/messages/send",
            json={"receiver_id": str(bob.id), "content": "hi"},
            headers={"Authorization": f"Bearer {make_token(alice.id)}"},
        )
        conversation_id = response.json()["data"]["conversation_id"]

        with client.websocket_connect(f"/ws?token={make_token(alice.id)}") as alice_ws, \
                client.websocket_connect(f"/ws?token={make_token(bob.id)}") as bob_ws:
            for ws in (alice_ws, bob_ws):
                ws.send_json({"type": "join_conversation", "conversation_id": conversation_id})
                assert ws.receive_json()["type"] == "rooms_joined"

            alice_ws.send_json({"type": "typing_start", "conversation_id": conversation_id})
            typing = bob_ws.receive_json()
            assert typing["type"] == "user_typing"
            assert typing["payload"]["user_name"] == "Alice"

            alice_ws.send_text("{broken")
            error = alice_ws.receive_json()
            assert error["type"] == "error"
            assert error["payload"]["code"] == "invalid_frame"

            alice_ws.send_json({"type": "typing_stop", "conversation_id": conversation_id})
            assert bob_ws.receive_json()["type"] == "user_stopped_typing"


def test_binary_frame_gets_error_and_channel_stays_open(app, make_token, new_user):
    store = app.state.portal.store
    with TestClient(app) as client:
        alice = client.portal.call(new_user, store, "Alice")

        with client.websocket_connect(f"/ws?token={make_token(alice.id)}") as ws:
            ws.send_bytes(b'{"type": "join_conversations"}')
            error = ws.receive_json()
            assert error["type"] == "error"
            assert error["payload"]["code"] == "invalid_frame"

            ws.send_json({"type": "join_conversations"})
            ack = ws.receive_json()
            assert ack["type"] == "rooms_joined"
            assert app.state.portal.registry.is_online(alice.id)
