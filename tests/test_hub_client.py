import asyncio
import json
from urllib.parse import parse_qs, urlsplit

import pytest
from websockets.exceptions import ConnectionClosedOK

from client import ClientState, HubClient, HubInvocationError, with_token


class FakeTransport:
    """Scripted hub: acks every command unless told to fail it."""

    def __init__(self, error_on=()):
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.sent = []
        self.closed = False
        self.error_on = set(error_on)

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionClosedOK(None, None)
        frame = json.loads(message)
        self.sent.append(frame)
        if frame["type"] == "pong":
            return
        if frame["type"] in self.error_on:
            self.push({
                "type": "error",
                "id": frame["id"],
                "data": {"code": 40300, "errorType": "PermissionDenied", "message": "nope"},
            })
            return
        data = {"room": frame["room"]}
        if frame["type"] == "SendMessage":
            data["messageId"] = len(self.sent)
        self.push({"type": "ack", "id": frame["id"], "data": data})

    async def recv(self) -> str:
        item = await self.inbox.get()
        if item is None:
            raise ConnectionClosedOK(None, None)
        return json.dumps(item)

    async def close(self) -> None:
        self.drop()

    def push(self, frame: dict) -> None:
        self.inbox.put_nowait(frame)

    def drop(self) -> None:
        if not self.closed:
            self.closed = True
            self.inbox.put_nowait(None)

    def joined(self):
        return [f["room"] for f in self.sent if f["type"] == "JoinChat"]


class FakeConnector:
    def __init__(self, fail_first: int = 0, error_on=()):
        self.fail_remaining = fail_first
        self.error_on = error_on
        self.urls = []
        self.transports = []

    async def __call__(self, url: str) -> FakeTransport:
        self.urls.append(url)
        if self.fail_remaining > 0:
            self.fail_remaining -= 1
            raise OSError("connection refused")
        transport = FakeTransport(self.error_on)
        self.transports.append(transport)
        return transport

    def tokens(self):
        return [parse_qs(urlsplit(u).query).get("access_token", [None])[0] for u in self.urls]


async def eventually(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def make_client(connector: FakeConnector) -> HubClient:
    counter = iter(range(1, 1000))
    return HubClient(
        "ws://gateway/chathub",
        token_provider=lambda: f"t{next(counter)}",
        connector=connector,
        backoff_initial_s=0.01,
        backoff_max_s=0.05,
        invoke_timeout_s=1.0,
    )


def test_with_token_replaces_existing_param():
    url = with_token("ws://h/chathub?access_token=old&x=1", "new")
    assert parse_qs(urlsplit(url).query) == {"access_token": ["new"], "x": ["1"]}
    assert with_token("ws://h/chathub", None) == "ws://h/chathub"


async def test_reconnect_rejoins_rooms_with_fresh_token():
    connector = FakeConnector()
    client = make_client(connector)
    states = []
    client.on_state_change(states.append)

    await client.join_chat(7)
    await client.join_chat("9")
    assert client.joined_rooms == {"7", "9"}

    connector.transports[0].drop()
    await eventually(lambda: len(connector.transports) == 2 and len(connector.transports[1].joined()) == 2)

    assert connector.transports[1].joined() == ["7", "9"]
    assert connector.tokens() == ["t1", "t2"]
    assert client.reconnect_count == 1
    await client.wait_open(timeout=1)
    assert states == [
        ClientState.CONNECTING,
        ClientState.OPEN,
        ClientState.RECONNECTING,
        ClientState.OPEN,
    ]
    await client.stop()
    assert client.state is ClientState.DISCONNECTED


async def test_connect_retries_until_backend_accepts():
    connector = FakeConnector(fail_first=2)
    client = make_client(connector)
    await client.wait_open(timeout=2)

    assert connector.tokens() == ["t1", "t2", "t3"]
    assert client.state is ClientState.OPEN
    await client.stop()


async def test_leave_while_disconnected_only_forgets_room():
    connector = FakeConnector()
    client = make_client(connector)
    await client.join_chat(7)
    await client.join_chat(9)

    connector.fail_remaining = 1000
    connector.transports[0].drop()
    await eventually(lambda: client.state is ClientState.RECONNECTING)

    await client.leave_chat(9)
    assert client.joined_rooms == {"7"}
    assert not any(f["type"] == "LeaveChat" for f in connector.transports[0].sent)

    connector.fail_remaining = 0
    await eventually(lambda: len(connector.transports) == 2 and connector.transports[1].joined() == ["7"])
    await client.stop()


async def test_send_while_not_open_connects_first():
    connector = FakeConnector()
    client = make_client(connector)
    assert client.state is ClientState.DISCONNECTED

    result = await client.send_message(7, "hello")
    assert result["room"] == "7"
    frame = connector.transports[0].sent[-1]
    assert (frame["type"], frame["room"], frame["data"]) == ("SendMessage", "7", {"text": "hello"})
    await client.stop()


async def test_error_frame_raises_invocation_error():
    connector = FakeConnector(error_on={"SendMessage"})
    client = make_client(connector)
    with pytest.raises(HubInvocationError) as exc:
        await client.send_message(7, "hello")
    assert exc.value.error_type == "PermissionDenied"
    assert exc.value.code == 40300
    await client.stop()


async def test_events_reach_handlers_and_ping_is_answered():
    connector = FakeConnector()
    client = make_client(connector)
    received = []

    @client.on("ReceiveMessage")
    async def on_message(event):
        received.append(event.data["id"])

    await client.wait_open(timeout=1)
    transport = connector.transports[0]
    transport.push({"type": "welcome", "data": {"connectionId": "abc", "userId": 1}})
    transport.push({"type": "ReceiveMessage", "room": "7", "data": {"id": 5, "text": "hi"}})
    transport.push({"type": "ping"})

    await eventually(lambda: received == [5] and any(f["type"] == "pong" for f in transport.sent))
    assert client.connection_id == "abc"
    await client.stop()
