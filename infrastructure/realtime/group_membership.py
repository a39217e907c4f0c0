"""Group membership table: room id -> connection ids subscribed to it.

Groups are created lazily on first join and kept when they become empty.
A reverse index (connection -> rooms) lets `remove_everywhere` drop a
closed connection from every group in one locked step.
"""
from __future__ import annotations

import asyncio
from typing import Dict, FrozenSet, List, Set

from core.logging_config import get_logger


logger = get_logger(__name__)


class GroupMembershipTable:
    def __init__(self) -> None:
        # room -> set[connection_id]
        self._groups: Dict[str, Set[str]] = {}
        # connection_id -> set[room]
        self._rooms_by_conn: Dict[str, Set[str]] = {}
        self._lock = asyncio.Lock()

    async def join(self, room: str, connection_id: str) -> bool:
        """Add a connection to a room's group. Returns False if already a member."""
        room = str(room)
        async with self._lock:
            members = self._groups.setdefault(room, set())
            if connection_id in members:
                return False
            members.add(connection_id)
            self._rooms_by_conn.setdefault(connection_id, set()).add(room)
        logger.info("group_join", room=room, connection_id=connection_id)
        return True

    async def leave(self, room: str, connection_id: str) -> bool:
        """Remove a connection from a room's group; unknown ids are a no-op."""
        room = str(room)
        async with self._lock:
            members = self._groups.get(room)
            if members is None or connection_id not in members:
                return False
            members.discard(connection_id)
            rooms = self._rooms_by_conn.get(connection_id)
            if rooms is not None:
                rooms.discard(room)
                if not rooms:
                    del self._rooms_by_conn[connection_id]
        logger.info("group_leave", room=room, connection_id=connection_id)
        return True

    async def members_of(self, room: str) -> FrozenSet[str]:
        """Snapshot of the room's current members, safe to iterate while others mutate."""
        async with self._lock:
            return frozenset(self._groups.get(str(room), ()))

    async def rooms_of(self, connection_id: str) -> FrozenSet[str]:
        async with self._lock:
            return frozenset(self._rooms_by_conn.get(connection_id, ()))

    async def remove_everywhere(self, connection_id: str) -> List[str]:
        """Drop a connection from every group it belongs to. Returns the rooms left."""
        async with self._lock:
            rooms = self._rooms_by_conn.pop(connection_id, set())
            for room in rooms:
                members = self._groups.get(room)
                if members is not None:
                    members.discard(connection_id)
        if rooms:
            logger.info("group_remove_everywhere", connection_id=connection_id, rooms=sorted(rooms))
        return sorted(rooms)

    def has_group(self, room: str) -> bool:
        return str(room) in self._groups

    @property
    def group_count(self) -> int:
        return len(self._groups)
