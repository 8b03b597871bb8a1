"""Conversation room membership for live connections."""
from typing import Dict, Set


class RoomTable:
    """Two-way index between rooms and the connections that joined them.

    Empty rooms are dropped immediately; a room only exists while someone is in it.
    """

    def __init__(self) -> None:
        self._members: Dict[str, Set[str]] = {}
        self._rooms_by_connection: Dict[str, Set[str]] = {}

    def join(self, room_id: str, connection_id: str) -> None:
        self._members.setdefault(room_id, set()).add(connection_id)
        self._rooms_by_connection.setdefault(connection_id, set()).add(room_id)

    def leave(self, room_id: str, connection_id: str) -> bool:
        members = self._members.get(room_id)
        if not members or connection_id not in members:
            return False
        members.discard(connection_id)
        if not members:
            del self._members[room_id]
        rooms = self._rooms_by_connection.get(connection_id)
        if rooms is not None:
            rooms.discard(room_id)
            if not rooms:
                del self._rooms_by_connection[connection_id]
        return True

    def drop_connection(self, connection_id: str) -> Set[str]:
        """Remove a connection from every room it joined and return those rooms."""
        rooms = self._rooms_by_connection.pop(connection_id, set())
        for room_id in rooms:
            members = self._members.get(room_id)
            if members is None:
                continue
            members.discard(connection_id)
            if not members:
                del self._members[room_id]
        return rooms

    def members(self, room_id: str) -> Set[str]:
        return set(self._members.get(room_id, ()))

    def rooms_of(self, connection_id: str) -> Set[str]:
        return set(self._rooms_by_connection.get(connection_id, ()))

    def is_member(self, room_id: str, connection_id: str) -> bool:
        return connection_id in self._members.get(room_id, ())
