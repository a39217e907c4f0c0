"""
聊天领域事件 - 变更结果及其广播事件类型
"""
from dataclasses import dataclass
from enum import Enum

from .entity import ChatMessage


class EventKind(str, Enum):
    """Kind of change a broadcast envelope represents."""
    CREATED = "created"
    EDITED = "edited"
    DELETED = "deleted"

    @property
    def hub_event(self) -> str:
        """Server-to-client event name on the push hub."""
        return _HUB_EVENTS[self]

    @classmethod
    def from_hub_event(cls, name: str) -> "EventKind":
        for kind, event in _HUB_EVENTS.items():
            if event == name:
                return kind
        raise ValueError(f"unknown hub event: {name}")


_HUB_EVENTS = {
    EventKind.CREATED: "ReceiveMessage",
    EventKind.EDITED: "MessageEdited",
    EventKind.DELETED: "MessageDeleted",
}


class Transport(str, Enum):
    """Transport a mutation arrived on."""
    HTTP = "http"
    HUB = "hub"


@dataclass(frozen=True)
class MutationOutcome:
    """变更结果：决定回复与广播的去向"""
    room_id: str
    message: ChatMessage
    kind: EventKind
    origin: Transport

    @property
    def reply_to_caller(self) -> bool:
        return self.origin is Transport.HTTP
