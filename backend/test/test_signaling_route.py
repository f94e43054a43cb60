"""시그널링 WebSocket 엔드포인트 및 HTTP API 테스트.

FastAPI TestClient로 실제 라우터와 레지스트리를 통해 메시지를 주고받습니다.
"""

import pytest
from fastapi.testclient import TestClient

from app import app


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


def create_room(ws) -> str:
    ws.send_json({"type": "create-room", "request_id": "create-1"})
    reply = ws.receive_json()
    assert reply["type"] == "room-created"
    assert reply["request_id"] == "create-1"
    return reply["data"]["room_id"]


def test_create_join_and_relay(client):
    with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
        alice_id = alice.receive_json()["data"]["connection_id"]
        bob.receive_json()

        room_id = create_room(alice)

        bob.send_json({"type": "join-room", "data": {"room_id": room_id}, "request_id": "join-1"})
        joined = bob.receive_json()
        assert joined == {
            "type": "room-joined",
            "data": {"room_id": room_id, "peer_count": 2},
            "request_id": "join-1",
        }
        assert alice.receive_json() == {"type": "peer-joined", "data": {"room_id": room_id}}

        alice.send_json({"type": "offer", "data": {"to": room_id, "sdp": "v=0", "type": "offer"}})
        forwarded = bob.receive_json()
        assert forwarded == {
            "type": "offer",
            "data": {"sdp": "v=0", "type": "offer", "from": alice_id},
        }


def test_third_participant_gets_room_full(client):
    with client.websocket_connect("/ws") as alice, \
            client.websocket_connect("/ws") as bob, \
            client.websocket_connect("/ws") as carol:
        for ws in (alice, bob, carol):
            ws.receive_json()

        room_id = create_room(alice)
        bob.send_json({"type": "join-room", "data": {"room_id": room_id}})
        assert bob.receive_json()["type"] == "room-joined"

        carol.send_json({"type": "join-room", "data": {"room_id": room_id}, "request_id": "join-3"})
        reply = carol.receive_json()

        assert reply["type"] == "error"
        assert reply["request_id"] == "join-3"
        assert reply["data"]["code"] == "RoomFull"
        assert reply["data"]["room_id"] == room_id


def test_join_unknown_room(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()

        ws.send_json({"type": "join-room", "data": {"room_id": "no-such-room"}, "request_id": "j"})
        reply = ws.receive_json()

        assert reply["type"] == "error"
        assert reply["data"]["code"] == "RoomNotFound"


def test_invalid_messages_keep_socket_open(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()

        ws.send_text("this is not json")
        assert ws.receive_json()["data"]["code"] == "InvalidMessage"

        ws.send_json({"type": "dance", "request_id": "u1"})
        reply = ws.receive_json()
        assert reply["request_id"] == "u1"
        assert reply["data"]["code"] == "InvalidMessage"

        ws.send_json({"type": "join-room", "data": {}, "request_id": "j1"})
        assert ws.receive_json()["data"]["code"] == "InvalidMessage"

        ws.send_json({"type": "offer", "data": {"sdp": "v=0"}})
        assert ws.receive_json()["data"]["code"] == "InvalidMessage"

        # 소켓은 계속 사용 가능
        create_room(ws)


def test_disconnect_sends_peer_left(client):
    with client.websocket_connect("/ws") as alice:
        alice.receive_json()
        room_id = create_room(alice)

        with client.websocket_connect("/ws") as bob:
            bob.receive_json()
            bob.send_json({"type": "join-room", "data": {"room_id": room_id}})
            assert bob.receive_json()["type"] == "room-joined"
            assert alice.receive_json()["type"] == "peer-joined"

        assert alice.receive_json() == {"type": "peer-left", "data": {"room_id": room_id}}

        rooms = client.get("/api/rooms").json()["rooms"]
        assert [r["peer_count"] for r in rooms if r["room_id"] == room_id] == [1]


def test_explicit_leave_room(client):
    with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
        alice.receive_json()
        bob.receive_json()
        room_id = create_room(alice)
        bob.send_json({"type": "join-room", "data": {"room_id": room_id}})
        bob.receive_json()
        alice.receive_json()

        bob.send_json({"type": "leave-room"})

        assert alice.receive_json() == {"type": "peer-left", "data": {"room_id": room_id}}


def test_health_and_ice_servers(client):
    health = client.get("/api/health").json()
    assert health["status"] == "ok"
    assert "rooms" in health

    ice_servers = client.get("/api/ice-servers").json()
    assert {"urls": "stun:stun.l.google.com:19302"} in ice_servers

    assert client.get("/").json()["status"] == "ok"
