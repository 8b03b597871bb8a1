"""In-memory presence registry: which users are online, and through which connections.

A user is online exactly while at least one of its connections is registered.
The registry only reports transitions; notifying clients and updating the
persisted ``is_online`` projection is up to the caller.
"""
from typing import Dict, List, Optional, Set, Tuple

from ..shared.utils import is_valid_identifier


class PresenceRegistry:
    def __init__(self) -> None:
        self._connections_by_user: Dict[str, Set[str]] = {}
        self._user_by_connection: Dict[str, str] = {}

    def add_connection(self, user_id: str, connection_id: str) -> bool:
        """Register ``connection_id`` under ``user_id``.

        Returns True when this is the user's first live connection. Calling it
        again with the same pair is a no-op that returns False.
        """
        if not is_valid_identifier(user_id):
            raise ValueError(f"Invalid user id: {user_id!r}")
        if not connection_id:
            raise ValueError("connection_id is required")
        owner = self._user_by_connection.get(connection_id)
        if owner is not None and owner != user_id:
            raise ValueError(f"Connection {connection_id} is already bound to user {owner}")

        connections = self._connections_by_user.setdefault(user_id, set())
        went_online = not connections
        connections.add(connection_id)
        self._user_by_connection[connection_id] = user_id
        return went_online

    def remove_connection(self, connection_id: str) -> Tuple[Optional[str], bool]:
        """Drop a connection; returns ``(owner, went_offline)``.

        Unknown connections return ``(None, False)``.
        """
        user_id = self._user_by_connection.pop(connection_id, None)
        if user_id is None:
            return None, False
        connections = self._connections_by_user.get(user_id, set())
        connections.discard(connection_id)
        if connections:
            return user_id, False
        self._connections_by_user.pop(user_id, None)
        return user_id, True

    def list_online_user_ids(self) -> List[str]:
        return sorted(self._connections_by_user)

    def is_online(self, user_id: str) -> bool:
        return bool(self._connections_by_user.get(user_id))

    def user_for(self, connection_id: str) -> Optional[str]:
        return self._user_by_connection.get(connection_id)

    def connections_for(self, user_id: str) -> Set[str]:
        return set(self._connections_by_user.get(user_id, ()))

    def __len__(self) -> int:
        return len(self._connections_by_user)
