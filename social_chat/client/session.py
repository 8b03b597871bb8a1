"""One open conversation wired to the REST API and the realtime channel."""
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import requests

from .api import APIClient
from .conversation import ConversationState, MergeResult
from .models import ChatMessage, PeerStatus, User, parse_timestamp
from .realtime import RealtimeClient
from .storage import SEND_TIMEOUT_SECONDS
from .viewport import Viewport
from ..shared import protocol
from ..shared.utils import conversation_id

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[str, Optional[ChatMessage]], None]


class ChatSession:
    """Keeps the local message list, peer presence and scroll state in sync.

    Outgoing messages go over REST; the server echoes the stored record to the
    room, and whichever copy arrives first reconciles the optimistic entry.
    Realtime handlers run on the reader thread, so all state changes happen
    under ``_lock``.
    """

    def __init__(
        self,
        api: APIClient,
        realtime: RealtimeClient,
        user_id: str,
        peer_id: str,
        send_timeout: float = SEND_TIMEOUT_SECONDS,
        view_height: int = 20,
        on_change: Optional[ChangeCallback] = None,
    ):
        self.api = api
        self.realtime = realtime
        self.user_id = user_id
        self.peer_id = peer_id
        self.room_id = conversation_id(user_id, peer_id)
        self.send_timeout = send_timeout
        self.state = ConversationState(user_id, peer_id)
        self.viewport = Viewport(view_height)
        self.peer: Optional[User] = None
        self.peer_status = PeerStatus(user_id=peer_id)
        self.online_user_ids: Set[str] = set()
        self.on_change = on_change
        self._attachments: Dict[str, Tuple[Optional[str], Optional[str]]] = {}
        self._lock = threading.RLock()
        self._handlers = {
            protocol.MESSAGE: self._on_message,
            protocol.MESSAGE_DELETED: self._on_message_deleted,
            protocol.GET_USERS: self._on_online_users,
            protocol.USER_STATUS_CHANGED: self._on_status_changed,
            protocol.ERROR: self._on_error,
        }

    @property
    def messages(self) -> List[ChatMessage]:
        with self._lock:
            return list(self.state.messages)

    def open(self) -> None:
        conversation = self.api.get_conversation(self.user_id, self.peer_id)
        with self._lock:
            receiver = conversation.get("receiver")
            if receiver:
                self.peer = User(**receiver)
            self.state.load_history(conversation.get("messages", []))
            self.viewport.content_changed(len(self.state))
            self.viewport.scroll_to_bottom()
        for event, handler in self._handlers.items():
            self.realtime.on(event, handler)
        self.realtime.on_open(self._announce)
        self.refresh_status()

    def close(self) -> None:
        self.realtime.emit(protocol.LEAVE_ROOM, {"room_id": self.room_id})
        for event, handler in self._handlers.items():
            self.realtime.off(event, handler)

    def send(self, text: str, image_path: Optional[str] = None, voice_path: Optional[str] = None) -> ChatMessage:
        text = text.strip()
        if not text and not image_path and not voice_path:
            raise ValueError("Nothing to send")
        with self._lock:
            entry = self.state.append_optimistic(text, image=image_path, voice=voice_path)
            if image_path or voice_path:
                self._attachments[entry.client_temp_id] = (image_path, voice_path)
            self._content_changed()
        self._changed("sending", entry)
        self._deliver(entry)
        return entry

    def retry(self, key: str) -> Optional[ChatMessage]:
        with self._lock:
            entry = self.state.find(key)
            if entry is None or entry.client_temp_id is None:
                return None
            entry = self.state.mark_sending(entry.client_temp_id)
        if entry is None:
            return None
        self._changed("sending", entry)
        self._deliver(entry)
        return entry

    def delete(self, key: str) -> bool:
        with self._lock:
            entry = self.state.begin_delete(key)
            if entry is None:
                return False
            if entry.id is None:
                self.state.finish_delete(key)
                self._attachments.pop(entry.client_temp_id, None)
                self._content_changed()
        if entry.id is None:
            self.realtime.emit(protocol.UNSEND_TEMP, {"client_temp_id": entry.client_temp_id})
            self._changed("deleted", entry)
            return True

        try:
            self.api.delete_message(entry.id)
        except requests.RequestException as exc:
            logger.warning("Could not delete message %s: %s", entry.id, exc)
            with self._lock:
                self.state.restore(entry.id)
            self._changed("restored", entry)
            return False
        with self._lock:
            self.state.finish_delete(entry.id)
            self._content_changed()
        self._changed("deleted", entry)
        return True

    def refresh_status(self) -> PeerStatus:
        """Poll the peer's presence; on failure the last known status is kept."""
        try:
            status = self.api.get_user_status(self.peer_id)
        except requests.RequestException as exc:
            logger.warning("Could not refresh status for %s: %s", self.peer_id, exc)
            return self.peer_status
        with self._lock:
            self.peer_status.is_online = bool(status.get("is_online"))
            self.peer_status.last_seen = parse_timestamp(status.get("last_seen"))
        return self.peer_status

    def expire_pending(self) -> List[ChatMessage]:
        with self._lock:
            expired = self.state.expire_pending(self.send_timeout)
        for entry in expired:
            self._changed("failed", entry)
        return expired

    def scroll_to(self, offset: int) -> None:
        with self._lock:
            self.viewport.scroll_to(offset)

    def jump_to_bottom(self) -> None:
        with self._lock:
            self.viewport.scroll_to_bottom()

    def _announce(self) -> None:
        self.realtime.emit(protocol.ADD_USER, {"user_id": self.user_id})
        self.realtime.emit(protocol.JOIN_ROOM, {"room_id": self.room_id, "user_id": self.user_id})

    def _deliver(self, entry: ChatMessage) -> None:
        temp_id = entry.client_temp_id
        image_path, voice_path = self._attachments.get(temp_id, (None, None))
        try:
            if image_path or voice_path:
                record = self.api.send_with_attachments(
                    self.peer_id,
                    text=entry.text,
                    client_temp_id=temp_id,
                    image_path=image_path,
                    voice_path=voice_path,
                )
            else:
                record = self.api.send_message(
                    {
                        "sender": self.user_id,
                        "receiver": self.peer_id,
                        "text": entry.text,
                        "client_temp_id": temp_id,
                    }
                )
        except (requests.RequestException, OSError) as exc:
            logger.warning("Sending %s failed: %s", temp_id, exc)
            with self._lock:
                failed = self.state.mark_failed(temp_id)
            if failed:
                self._changed("failed", entry)
            return
        self._merge(record)

    def _merge(self, record: Dict[str, Any]) -> MergeResult:
        with self._lock:
            result = self.state.merge_incoming(record)
            if result in (MergeResult.APPENDED, MergeResult.RECONCILED):
                self._attachments.pop(record.get("client_temp_id"), None)
                self._content_changed()
            entry = self.state.find(record.get("id") or "")
        if result == MergeResult.UNSENT:
            # Deleted locally before the server stored it; remove the stored copy too.
            self.realtime.emit(protocol.UNSEND_TEMP, {"client_temp_id": record.get("client_temp_id")})
        elif result in (MergeResult.APPENDED, MergeResult.RECONCILED):
            self._changed(result.value, entry)
        return result

    def _content_changed(self) -> None:
        self.viewport.content_changed(len(self.state))

    def _changed(self, kind: str, entry: Optional[ChatMessage]) -> None:
        if self.on_change is not None:
            self.on_change(kind, entry)

    def _on_message(self, data: Dict[str, Any]) -> None:
        self._merge(data)

    def _on_message_deleted(self, data: Dict[str, Any]) -> None:
        with self._lock:
            removed = self.state.apply_deleted(data)
            if removed:
                self._content_changed()
        if removed:
            self._changed("deleted", None)

    def _on_online_users(self, data: Dict[str, Any]) -> None:
        with self._lock:
            self.online_user_ids = set(data.get("user_ids") or [])
            self.peer_status.is_online = self.peer_id in self.online_user_ids
        self._changed("presence", None)

    def _on_status_changed(self, data: Dict[str, Any]) -> None:
        if data.get("user_id") != self.peer_id:
            return
        with self._lock:
            self.peer_status.is_online = bool(data.get("is_online"))
            last_seen = parse_timestamp(data.get("last_seen"))
            if last_seen is not None:
                self.peer_status.last_seen = last_seen
        self._changed("presence", None)

    def _on_error(self, data: Dict[str, Any]) -> None:
        logger.warning("Server rejected %s: %s", data.get("event"), data.get("detail"))
