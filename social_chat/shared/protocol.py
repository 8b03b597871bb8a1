"""Websocket frame format shared by the server and the client."""
import json
from dataclasses import dataclass, field
from typing import Any, Dict

# Client -> server
ADD_USER = "add_user"
JOIN_ROOM = "join_room"
LEAVE_ROOM = "leave_room"
SEND_MESSAGE = "send_message"
UNSEND_TEMP = "unsend_temp"

# Server -> client
GET_USERS = "get_users"
USER_STATUS_CHANGED = "user_status_changed"
MESSAGE = "message"
MESSAGE_DELETED = "message_deleted"
ROOM_JOINED = "room_joined"
ROOM_LEFT = "room_left"
ERROR = "error"


@dataclass
class Frame:
    """A single websocket event: ``{"event": ..., "data": {...}}``."""

    event: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps({"event": self.event, "data": self.data}, separators=(",", ":"), default=str)

    @staticmethod
    def from_json(raw: str) -> "Frame":
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise ValueError("Frame is not valid JSON") from exc
        if not isinstance(payload, dict) or not isinstance(payload.get("event"), str):
            raise ValueError("Frame must be an object with an 'event' name")
        data = payload.get("data")
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValueError("Frame 'data' must be an object")
        return Frame(event=payload["event"], data=data)
