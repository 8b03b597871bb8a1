"""Client-side models for users, presence and message display."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class MessageStatus(str, Enum):
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


@dataclass
class User:
    id: str
    username: str
    profile_picture: str = ""


@dataclass
class PeerStatus:
    user_id: str
    is_online: bool = False
    last_seen: Optional[datetime] = None


@dataclass
class ChatMessage:
    """One bubble in the open conversation, optimistic or persisted.

    ``id`` stays None until the server has stored the message.
    """

    sender_id: str
    recipient_id: str
    text: str = ""
    id: Optional[str] = None
    client_temp_id: Optional[str] = None
    image: Optional[str] = None
    voice: Optional[str] = None
    created_at: Optional[datetime] = None
    status: MessageStatus = MessageStatus.SENT
    deleting: bool = False
    queued_at: Optional[float] = field(default=None, repr=False)

    @property
    def key(self) -> str:
        return self.id or self.client_temp_id or ""

    @staticmethod
    def from_record(record: Dict[str, Any]) -> "ChatMessage":
        return ChatMessage(
            id=record.get("id"),
            sender_id=str(record.get("sender", "")),
            recipient_id=str(record.get("receiver", "")),
            text=record.get("text") or "",
            image=record.get("image"),
            voice=record.get("voice"),
            client_temp_id=record.get("client_temp_id"),
            created_at=parse_timestamp(record.get("created_at")),
        )


def parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
