import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from api.routes.hub import HubSession
from application.services.fanout_service import FanoutService
from application.services.realtime_service import RealtimeService
from domain.chat import Identity
from infrastructure.realtime.brokers import InMemoryRealtimeBroker
from infrastructure.realtime.connection_registry import ConnectionRegistry
from infrastructure.realtime.group_membership import GroupMembershipTable


def _open(client: TestClient, token: str):
    return client.websocket_connect(f"/chathub?access_token={token}")


def test_missing_token_closes_with_policy_violation(client: TestClient, app):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/chathub"):
            pass
    assert exc.value.code == 1008
    assert len(app.state.realtime_service.registry) == 0


def test_bearer_header_handshake(client: TestClient, make_token):
    with client.websocket_connect("/chathub", headers={"Authorization": f"Bearer {make_token(1)}"}) as ws:
        welcome = ws.receive_json()
        assert welcome["type"] == "welcome"
        assert welcome["data"]["userId"] == 1
        assert welcome["data"]["connectionId"]


def test_http_send_reaches_hub_subscriber(client: TestClient, make_token, auth_headers):
    with _open(client, make_token(1)) as ws_a:
        assert ws_a.receive_json()["type"] == "welcome"
        ws_a.send_json({"type": "JoinChat", "room": "7", "id": "1"})
        ack = ws_a.receive_json()
        assert (ack["type"], ack["id"], ack["data"]) == ("ack", "1", {"room": "7"})

        resp = client.post("/api/chatrooms/7/messages", json={"text": "hi from bob"}, headers=auth_headers(2))
        assert resp.status_code == 200
        body = resp.json()["data"]
        assert body["isEdited"] is False
        assert body["isDeleted"] is False
        assert body["senderId"] == 2

        event = ws_a.receive_json()
        assert event["type"] == "ReceiveMessage"
        assert event["room"] == "7"
        assert event["data"] == body

        # Not the author: rejected by the backend and never broadcast
        denied = client.delete(f"/api/chatrooms/7/messages/{body['id']}", headers=auth_headers(1))
        assert denied.status_code == 403
        assert denied.json()["error"]["type"] == "PermissionDenied"

        ws_a.send_json({"type": "ping", "id": "p1"})
        pong = ws_a.receive_json()
        assert pong["type"] == "pong"
        assert pong["id"] == "p1"


def test_hub_send_message_acks_and_broadcasts(client: TestClient, make_token, fake_backend):
    with _open(client, make_token(1)) as ws_a, _open(client, make_token(2)) as ws_b:
        for ws in (ws_a, ws_b):
            assert ws.receive_json()["type"] == "welcome"
            ws.send_json({"type": "JoinChat", "data": {"roomId": 7}, "id": "j"})
            assert ws.receive_json()["type"] == "ack"

        ws_a.send_json({"type": "SendMessage", "room": "7", "data": {"text": "yo"}, "id": "s1"})
        frames = [ws_a.receive_json(), ws_a.receive_json()]
        by_type = {f["type"]: f for f in frames}
        assert set(by_type) == {"ReceiveMessage", "ack"}
        assert by_type["ack"]["data"]["messageId"] == by_type["ReceiveMessage"]["data"]["id"]

        received = ws_b.receive_json()
        assert received["type"] == "ReceiveMessage"
        assert received["data"]["text"] == "yo"
        assert fake_backend.calls.count("SendMessage") == 1


def test_leave_stops_delivery(client: TestClient, make_token, auth_headers):
    with _open(client, make_token(1)) as ws:
        ws.receive_json()
        ws.send_json({"type": "JoinChat", "room": "7", "id": "1"})
        ws.receive_json()
        ws.send_json({"type": "LeaveChat", "room": "7", "id": "2"})
        assert ws.receive_json()["type"] == "ack"

        client.post("/api/chatrooms/7/messages", json={"text": "nobody hears"}, headers=auth_headers(2))
        ws.send_json({"type": "ping"})
        assert ws.receive_json()["type"] == "pong"


def test_bad_frames_get_error_frames(client: TestClient, make_token):
    with _open(client, make_token(1)) as ws:
        ws.receive_json()

        ws.send_text("not json")
        err = ws.receive_json()
        assert err["type"] == "error"
        assert err["data"]["errorType"] == "InvalidArgument"

        ws.send_json({"type": "Explode", "id": "x"})
        err = ws.receive_json()
        assert err["type"] == "error"
        assert err["id"] == "x"

        ws.send_json({"type": "JoinChat", "room": "general", "id": "r"})
        err = ws.receive_json()
        assert err["id"] == "r"
        assert err["data"]["errorType"] == "InvalidArgument"

        ws.send_json({"type": "SendMessage", "room": "404", "data": {"text": "x"}, "id": "m"})
        err = ws.receive_json()
        assert err["id"] == "m"
        assert err["data"]["errorType"] == "NotFound"


def test_binary_frame_gets_error_frame_and_connection_survives(client: TestClient, app, make_token):
    with _open(client, make_token(1)) as ws:
        welcome = ws.receive_json()

        ws.send_bytes(b"\x00\x01")
        err = ws.receive_json()
        assert err["type"] == "error"
        assert err["data"]["errorType"] == "InvalidArgument"

        ws.send_json({"type": "ping", "id": "p"})
        pong = ws.receive_json()
        assert (pong["type"], pong["id"]) == ("pong", "p")
        assert app.state.realtime_service.registry.get(welcome["data"]["connectionId"]) is not None


def test_disconnect_removes_connection(client: TestClient, app, make_token):
    registry = app.state.realtime_service.registry
    with _open(client, make_token(1)) as ws:
        ws.receive_json()
        ws.send_json({"type": "JoinChat", "room": "7", "id": "1"})
        ws.receive_json()
        assert len(registry) == 1
    client.get("/health")
    assert len(registry) == 0


class _RecordingSocket:
    def __init__(self):
        self.sent = []

    async def send_json(self, data):
        self.sent.append(data)

    async def close(self, code: int = 1000):
        pass


async def test_session_replies_on_its_own_connection(fake_backend):
    groups = GroupMembershipTable()
    realtime = RealtimeService(
        broker=InMemoryRealtimeBroker(), registry=ConnectionRegistry(groups), groups=groups
    )
    sock = _RecordingSocket()
    alice = Identity(user_id=1, username="alice")
    connection_id = await realtime.connect(alice, sock)
    session = HubSession(sock, alice, realtime, FanoutService(fake_backend, realtime), connection_id)

    await session.handle({"type": "JoinChat", "room": 7, "id": "j"})
    await realtime.registry.drain()

    ack = sock.sent[-1]
    assert (ack["type"], ack["id"], ack["data"]) == ("ack", "j", {"room": "7"})
    assert await groups.members_of("7") == {connection_id}
    await realtime.aclose()
