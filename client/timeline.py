"""Consumer-side view of one room's messages.

A mutation can reach a client twice (the HTTP reply and the hub broadcast),
and broadcasts from concurrent mutations may arrive in any order. Applying
envelopes through RoomTimeline makes each ``(message id, event kind)`` pair
take effect once; re-applying it is a no-op.
"""
from __future__ import annotations

from typing import Any, Dict, List, Set, Tuple, Union

from application.ports.realtime import Envelope
from domain.chat import EventKind


class RoomTimeline:
    def __init__(self, room: Union[int, str]) -> None:
        self.room = str(room)
        self._messages: Dict[int, Dict[str, Any]] = {}
        self._seen: Set[Tuple[int, EventKind]] = set()

    def apply(self, kind: EventKind, message: Dict[str, Any]) -> bool:
        """Apply one envelope (camelCase message dict). Returns False if it was already applied."""
        message_id = int(message["id"])
        key = (message_id, kind)
        if key in self._seen:
            return False
        self._seen.add(key)

        current = self._messages.get(message_id)
        if kind is EventKind.CREATED:
            # An edit or delete may have overtaken the creation
            if current is None:
                self._messages[message_id] = dict(message)
        elif kind is EventKind.EDITED:
            if current is None or not current.get("isDeleted"):
                self._messages[message_id] = dict(message)
        else:
            merged = dict(current or message)
            merged.update(message)
            merged["isDeleted"] = True
            self._messages[message_id] = merged
        return True

    def apply_envelope(self, envelope: Envelope) -> bool:
        """Apply a hub event (ReceiveMessage / MessageEdited / MessageDeleted)."""
        if envelope.room is not None and str(envelope.room) != self.room:
            return False
        return self.apply(EventKind.from_hub_event(envelope.type), envelope.data)

    def get(self, message_id: int) -> Dict[str, Any] | None:
        return self._messages.get(int(message_id))

    def messages(self, *, include_deleted: bool = False) -> List[Dict[str, Any]]:
        """Messages ordered by send time then id."""
        items = [m for m in self._messages.values() if include_deleted or not m.get("isDeleted")]
        return sorted(items, key=lambda m: (str(m.get("sentAtUtc", "")), int(m["id"])))

    def __len__(self) -> int:
        return len(self._messages)
