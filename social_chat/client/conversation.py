"""Local view of one open conversation.

Optimistic entries are shown as soon as the user presses send and carry only
a ``client_temp_id``. The server echoes every stored message back to the room
with that temp id, which is how an entry is matched to its confirmation.
Delivery is at-least-once, so merging is idempotent on the persisted id.
"""
import secrets
import time
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set

from .models import ChatMessage, MessageStatus
from ..shared.utils import utcnow


class MergeResult(str, Enum):
    RECONCILED = "reconciled"
    APPENDED = "appended"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    UNSENT = "unsent"


def new_temp_id() -> str:
    return f"tmp_{secrets.token_hex(6)}_{int(time.time() * 1000)}"


class ConversationState:
    def __init__(self, user_id: str, peer_id: str):
        self.user_id = user_id
        self.peer_id = peer_id
        self.messages: List[ChatMessage] = []
        self._by_temp: Dict[str, ChatMessage] = {}
        self._by_id: Dict[str, ChatMessage] = {}
        # Temp ids removed locally before the server confirmed them.
        self._unsent: Set[str] = set()
        # Persisted ids already deleted; redelivered copies must not come back.
        self._deleted_ids: Set[str] = set()

    def __len__(self) -> int:
        return len(self.messages)

    def belongs(self, sender_id: str, recipient_id: str) -> bool:
        return {sender_id, recipient_id} == {self.user_id, self.peer_id}

    def load_history(self, records: Iterable[Dict[str, Any]]) -> None:
        self.messages = []
        self._by_temp.clear()
        self._by_id.clear()
        for record in records:
            self._append(ChatMessage.from_record(record))

    def append_optimistic(
        self,
        text: str,
        image: Optional[str] = None,
        voice: Optional[str] = None,
        now: Optional[float] = None,
    ) -> ChatMessage:
        client_temp_id = new_temp_id()
        while client_temp_id in self._by_temp:
            client_temp_id = new_temp_id()
        entry = ChatMessage(
            sender_id=self.user_id,
            recipient_id=self.peer_id,
            text=text,
            client_temp_id=client_temp_id,
            image=image,
            voice=voice,
            created_at=utcnow(),
            status=MessageStatus.SENDING,
            queued_at=time.monotonic() if now is None else now,
        )
        self._append(entry)
        return entry

    def merge_incoming(self, record: Dict[str, Any]) -> MergeResult:
        incoming = ChatMessage.from_record(record)
        if not self.belongs(incoming.sender_id, incoming.recipient_id):
            return MergeResult.IGNORED

        temp_id = incoming.client_temp_id
        if temp_id and temp_id in self._unsent:
            return MergeResult.UNSENT
        if incoming.id and incoming.id in self._deleted_ids:
            return MergeResult.DUPLICATE

        entry = self._by_temp.get(temp_id) if temp_id else None
        if entry is not None and entry.sender_id == incoming.sender_id:
            if entry.id is not None and entry.id == incoming.id:
                return MergeResult.DUPLICATE
            entry.id = incoming.id
            entry.text = incoming.text
            entry.image = incoming.image
            entry.voice = incoming.voice
            entry.created_at = incoming.created_at or entry.created_at
            entry.status = MessageStatus.SENT
            entry.queued_at = None
            if entry.id:
                self._by_id[entry.id] = entry
            return MergeResult.RECONCILED

        if incoming.id and incoming.id in self._by_id:
            return MergeResult.DUPLICATE
        self._append(incoming)
        return MergeResult.APPENDED

    def find(self, key: str) -> Optional[ChatMessage]:
        return self._by_id.get(key) or self._by_temp.get(key)

    def mark_failed(self, client_temp_id: str) -> bool:
        """Flag an unconfirmed entry as failed; confirmed entries are left alone."""
        entry = self._by_temp.get(client_temp_id)
        if entry is None or entry.status == MessageStatus.SENT:
            return False
        entry.status = MessageStatus.FAILED
        entry.queued_at = None
        return True

    def mark_sending(self, client_temp_id: str, now: Optional[float] = None) -> Optional[ChatMessage]:
        entry = self._by_temp.get(client_temp_id)
        if entry is None or entry.status != MessageStatus.FAILED:
            return None
        entry.status = MessageStatus.SENDING
        entry.queued_at = time.monotonic() if now is None else now
        return entry

    def expire_pending(self, timeout: float, now: Optional[float] = None) -> List[ChatMessage]:
        """Fail every entry that has been ``sending`` for longer than ``timeout`` seconds."""
        now = time.monotonic() if now is None else now
        expired = [
            m
            for m in self.messages
            if m.status == MessageStatus.SENDING and m.queued_at is not None and now - m.queued_at >= timeout
        ]
        for entry in expired:
            entry.status = MessageStatus.FAILED
            entry.queued_at = None
        return expired

    def begin_delete(self, key: str) -> Optional[ChatMessage]:
        entry = self.find(key)
        if entry is not None:
            entry.deleting = True
        return entry

    def finish_delete(self, key: str) -> Optional[ChatMessage]:
        entry = self.find(key)
        if entry is None:
            return None
        if entry.id is None and entry.client_temp_id:
            self._unsent.add(entry.client_temp_id)
        self._remove(entry)
        return entry

    def restore(self, key: str) -> Optional[ChatMessage]:
        entry = self.find(key)
        if entry is not None:
            entry.deleting = False
        return entry

    def apply_deleted(self, payload: Dict[str, Any]) -> bool:
        """Drop an entry the server reported as deleted, matched by id or temp id."""
        entry = None
        if payload.get("id"):
            self._deleted_ids.add(payload["id"])
            entry = self._by_id.get(payload["id"])
        if entry is None and payload.get("client_temp_id"):
            entry = self._by_temp.get(payload["client_temp_id"])
        if entry is None:
            return False
        self._remove(entry)
        return True

    def _append(self, entry: ChatMessage) -> None:
        self.messages.append(entry)
        if entry.client_temp_id:
            # Temp ids are only unique per sender; the first owner keeps the slot.
            self._by_temp.setdefault(entry.client_temp_id, entry)
        if entry.id:
            self._by_id[entry.id] = entry

    def _remove(self, entry: ChatMessage) -> None:
        self.messages = [m for m in self.messages if m is not entry]
        if entry.client_temp_id and self._by_temp.get(entry.client_temp_id) is entry:
            del self._by_temp[entry.client_temp_id]
        if entry.id:
            self._deleted_ids.add(entry.id)
        if entry.id and self._by_id.get(entry.id) is entry:
            del self._by_id[entry.id]
