import pytest

from application.services.fanout_service import FanoutService
from application.services.realtime_service import RealtimeService
from core.exceptions import UnauthorizedException
from domain.chat import EventKind, Identity, Transport
from domain.common.exceptions import (
    BackendUnavailableException,
    PermissionDeniedException,
    ResourceNotFoundException,
)
from infrastructure.realtime.brokers import InMemoryRealtimeBroker
from infrastructure.realtime.connection_registry import ConnectionRegistry
from infrastructure.realtime.group_membership import GroupMembershipTable


class RecordingSocket:
    def __init__(self):
        self.sent = []

    async def send_json(self, data):
        self.sent.append(data)

    async def close(self, code: int = 1000):
        pass

    def events(self, event_type: str):
        return [f for f in self.sent if f["type"] == event_type]


ALICE = Identity(user_id=1, username="alice")
BOB = Identity(user_id=2, username="bob")


@pytest.fixture
async def realtime():
    broker = InMemoryRealtimeBroker()
    groups = GroupMembershipTable()
    service = RealtimeService(broker=broker, registry=ConnectionRegistry(groups), groups=groups)
    await broker.subscribe(service.on_broker_event)
    yield service
    await service.aclose()


@pytest.fixture
def fanout(fake_backend, realtime):
    return FanoutService(fake_backend, realtime)


async def _connect(realtime, identity, room=None):
    sock = RecordingSocket()
    cid = await realtime.connect(identity, sock)
    if room is not None:
        assert await realtime.join_room(cid, room)
    return cid, sock


async def test_each_member_receives_exactly_one_copy(fanout, realtime):
    _, a = await _connect(realtime, ALICE, "7")
    _, b = await _connect(realtime, BOB, "7")
    _, outsider = await _connect(realtime, BOB, "8")

    outcome = await fanout.send_message(BOB, 7, "hello", origin=Transport.HTTP)
    await realtime.registry.drain()

    assert outcome.kind is EventKind.CREATED
    assert outcome.room_id == "7"
    assert outcome.reply_to_caller
    for sock in (a, b):
        received = sock.events("ReceiveMessage")
        assert len(received) == 1
        assert received[0]["room"] == "7"
        assert received[0]["data"]["id"] == outcome.message.id
        assert received[0]["data"]["text"] == "hello"
        assert received[0]["data"]["isDeleted"] is False
    assert outsider.events("ReceiveMessage") == []


async def test_edit_and_delete_broadcast_backend_envelope(fanout, realtime):
    _, a = await _connect(realtime, ALICE, "7")
    sent = await fanout.send_message(ALICE, 7, "first", origin=Transport.HUB)
    await fanout.edit_message(ALICE, 7, sent.message.id, "second")
    deleted = await fanout.delete_message(ALICE, 7, sent.message.id)
    await realtime.registry.drain()

    assert not sent.reply_to_caller
    assert a.events("MessageEdited")[0]["data"]["text"] == "second"
    assert a.events("MessageEdited")[0]["data"]["isEdited"] is True
    frame = a.events("MessageDeleted")[0]
    assert frame["data"]["isDeleted"] is True
    assert frame["data"]["id"] == deleted.message.id


async def test_backend_failure_broadcasts_nothing(fanout, realtime, fake_backend):
    _, a = await _connect(realtime, ALICE, "7")
    msg = await fake_backend.send_message(7, ALICE.user_id, "mine")

    with pytest.raises(PermissionDeniedException):
        await fanout.delete_message(BOB, 7, msg.id)
    with pytest.raises(ResourceNotFoundException):
        await fanout.send_message(ALICE, 404, "nowhere")
    await realtime.registry.drain()

    assert a.events("MessageDeleted") == []
    assert a.events("ReceiveMessage") == []


async def test_unavailable_backend_propagates(fanout, realtime, fake_backend):
    _, a = await _connect(realtime, ALICE, "7")

    async def down(*args, **kwargs):
        raise BackendUnavailableException()

    fake_backend.send_message = down
    with pytest.raises(BackendUnavailableException):
        await fanout.send_message(ALICE, 7, "hi")
    await realtime.registry.drain()
    assert a.events("ReceiveMessage") == []


async def test_missing_identity_is_unauthorized(fanout, fake_backend):
    with pytest.raises(UnauthorizedException):
        await fanout.send_message(None, 7, "hi")
    assert "SendMessage" not in fake_backend.calls


async def test_broadcast_uses_canonical_room(fanout, realtime, fake_backend):
    _, requested = await _connect(realtime, ALICE, "7")
    _, canonical = await _connect(realtime, BOB, "8")
    original = fake_backend.send_message

    async def reroute(chat_room_id, sender_id, text):
        fake_backend.rooms.setdefault(8, fake_backend.rooms[7])
        return await original(8, sender_id, text)

    fake_backend.send_message = reroute
    outcome = await fanout.send_message(ALICE, 7, "moved")
    await realtime.registry.drain()

    assert outcome.room_id == "8"
    assert len(canonical.events("ReceiveMessage")) == 1
    assert requested.events("ReceiveMessage") == []


async def test_closed_member_is_skipped(fanout, realtime):
    gone, _ = await _connect(realtime, ALICE, "7")
    _, b = await _connect(realtime, BOB, "7")
    await realtime.disconnect(gone)
    await realtime.disconnect(gone)

    await fanout.send_message(BOB, 7, "still here")
    await realtime.registry.drain()
    assert len(b.events("ReceiveMessage")) == 1
    assert await realtime.join_room(gone, "7") is False
