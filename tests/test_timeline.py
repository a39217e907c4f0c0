from application.ports.realtime import Envelope
from client import RoomTimeline
from domain.chat import EventKind


def _msg(id, text="hi", sent="2024-05-01T12:00:00Z", **flags):
    return {
        "id": id,
        "chatRoomId": 7,
        "senderId": 1,
        "text": text,
        "sentAtUtc": sent,
        "isEdited": flags.get("edited", False),
        "isDeleted": flags.get("deleted", False),
    }


def test_duplicate_envelopes_apply_once():
    timeline = RoomTimeline(7)
    # HTTP reply, then the same envelope via the hub broadcast
    assert timeline.apply(EventKind.CREATED, _msg(1)) is True
    assert timeline.apply(EventKind.CREATED, _msg(1)) is False
    assert len(timeline) == 1


def test_edit_overtaking_create_is_kept():
    timeline = RoomTimeline(7)
    timeline.apply(EventKind.EDITED, _msg(1, "edited", edited=True))
    timeline.apply(EventKind.CREATED, _msg(1, "original"))
    assert timeline.get(1)["text"] == "edited"


def test_delete_wins_over_late_edit():
    timeline = RoomTimeline(7)
    timeline.apply(EventKind.CREATED, _msg(1))
    timeline.apply(EventKind.DELETED, _msg(1, "", deleted=True))
    timeline.apply(EventKind.EDITED, _msg(1, "too late", edited=True))

    assert timeline.get(1)["isDeleted"] is True
    assert timeline.messages() == []
    assert [m["id"] for m in timeline.messages(include_deleted=True)] == [1]


def test_messages_sorted_by_send_time_then_id():
    timeline = RoomTimeline(7)
    timeline.apply(EventKind.CREATED, _msg(3, sent="2024-05-01T12:00:02Z"))
    timeline.apply(EventKind.CREATED, _msg(2, sent="2024-05-01T12:00:01Z"))
    timeline.apply(EventKind.CREATED, _msg(1, sent="2024-05-01T12:00:02Z"))
    assert [m["id"] for m in timeline.messages()] == [2, 1, 3]


def test_apply_envelope_ignores_other_rooms():
    timeline = RoomTimeline("7")
    assert timeline.apply_envelope(Envelope(type="ReceiveMessage", room="8", data=_msg(1))) is False
    assert timeline.apply_envelope(Envelope(type="MessageEdited", room="7", data=_msg(1, "x", edited=True)))
    assert timeline.get(1)["isEdited"] is True
