"""Realtime channel: websocket connections, conversation rooms and presence broadcasts.

Every handler runs on the event loop and only suspends while the message
store is working in a thread. Room membership is therefore looked up again
when a result is broadcast, never captured before the await.
"""
import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from fastapi import APIRouter, Query, Request, WebSocket, WebSocketDisconnect, status
from starlette.concurrency import run_in_threadpool

from ..shared import protocol
from ..shared.protocol import Frame
from ..shared.utils import conversation_id, is_valid_identifier, parse_conversation_id, utcnow
from .auth import resolve_token
from .logging_config import configure_logging
from .media import discard_attachments
from .registry import PresenceRegistry
from .rooms import RoomTable
from .schemas import MessageOut
from .store import MessageStore, UserDirectory, UserNotFound

router = APIRouter(tags=["realtime"])
logger = configure_logging("realtime")

Handler = Callable[["Connection", Dict[str, Any]], Awaitable[None]]


@dataclass(eq=False)
class Connection:
    websocket: WebSocket
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    auth_user_id: Optional[str] = None
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def send(self, frame: Frame) -> None:
        async with self.send_lock:
            await self.websocket.send_text(frame.to_json())


class ChannelServer:
    """Owns the presence registry and room table for one server process."""

    def __init__(
        self,
        store: MessageStore,
        directory: UserDirectory,
        upload_dir: Optional[Path] = None,
        registry: Optional[PresenceRegistry] = None,
        rooms: Optional[RoomTable] = None,
    ):
        self.store = store
        self.directory = directory
        self.upload_dir = upload_dir
        self.registry = registry or PresenceRegistry()
        self.rooms = rooms or RoomTable()
        self._connections: Dict[str, Connection] = {}
        self._background: Set[asyncio.Task] = set()
        # Projections must reach storage in the order the transitions happened.
        self._projection_lock = asyncio.Lock()
        self._handlers: Dict[str, Handler] = {
            protocol.ADD_USER: self.on_add_user,
            protocol.JOIN_ROOM: self.on_join_room,
            protocol.LEAVE_ROOM: self.on_leave_room,
            protocol.SEND_MESSAGE: self.on_send_message,
            protocol.UNSEND_TEMP: self.on_unsend_temp,
        }

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def serve(self, websocket: WebSocket, auth_user_id: Optional[str] = None) -> None:
        await websocket.accept()
        connection = self.attach(websocket, auth_user_id)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None:
                    await self._reject(connection, None, "Frames must be sent as text")
                    continue
                await self.dispatch(connection, raw)
        except WebSocketDisconnect:
            pass
        finally:
            self.disconnect(connection)

    def attach(self, websocket: WebSocket, auth_user_id: Optional[str] = None) -> Connection:
        connection = Connection(websocket=websocket, auth_user_id=auth_user_id)
        self._connections[connection.id] = connection
        logger.info("SOCKET_CONNECTED connection_id=%s auth_user_id=%s", connection.id, auth_user_id)
        return connection

    def disconnect(self, connection: Connection) -> None:
        """Forget a connection.

        Bookkeeping happens synchronously so it completes even when the
        connection's task is being cancelled; the resulting broadcasts run in
        a separate task.
        """
        if self._connections.pop(connection.id, None) is None:
            return
        rooms = self.rooms.drop_connection(connection.id)
        user_id, went_offline = self.registry.remove_connection(connection.id)
        logger.info(
            "SOCKET_DISCONNECTED connection_id=%s user_id=%s rooms=%s",
            connection.id,
            user_id,
            ",".join(sorted(rooms)) or "-",
        )
        if user_id is None:
            return
        last_seen = None
        if went_offline:
            # Queue the offline write now so a reconnect's online write lands after it.
            last_seen = utcnow()
            self._spawn(self._project_presence(user_id, False, last_seen))
        self._spawn(self._announce_departure(user_id, last_seen))

    async def dispatch(self, connection: Connection, raw: str) -> None:
        try:
            frame = Frame.from_json(raw)
        except ValueError as exc:
            await self._reject(connection, None, str(exc))
            return
        handler = self._handlers.get(frame.event)
        if handler is None:
            await self._reject(connection, frame.event, f"Unknown event: {frame.event}")
            return
        try:
            await handler(connection, frame.data)
        except ValueError as exc:
            logger.info(
                "EVENT_REJECTED event=%s connection_id=%s reason=%s", frame.event, connection.id, exc
            )
            await self._reject(connection, frame.event, str(exc))
        except Exception:
            logger.exception("EVENT_FAILED event=%s connection_id=%s", frame.event, connection.id)

    async def drain(self) -> None:
        """Wait for outstanding departure broadcasts and presence writes."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    async def on_add_user(self, connection: Connection, data: Dict[str, Any]) -> None:
        user_id = data.get("user_id")
        self._check_identity(connection, user_id)
        await self.register_presence(connection, user_id)

    async def on_join_room(self, connection: Connection, data: Dict[str, Any]) -> None:
        room_id = data.get("room_id")
        participants = parse_conversation_id(room_id)
        user_id = data.get("user_id")
        if user_id is not None:
            self._check_identity(connection, user_id)
        member = user_id or self.registry.user_for(connection.id) or connection.auth_user_id
        if member is None:
            raise ValueError("Declare a user before joining a room")
        if member not in participants:
            raise ValueError(f"User {member} is not a participant of room {room_id}")

        self.rooms.join(room_id, connection.id)
        logger.info("ROOM_JOINED room_id=%s connection_id=%s", room_id, connection.id)
        if user_id is not None and self.registry.user_for(connection.id) is None:
            await self.register_presence(connection, user_id)
        await self._send(connection, Frame(protocol.ROOM_JOINED, {"room_id": room_id}))

    async def on_leave_room(self, connection: Connection, data: Dict[str, Any]) -> None:
        room_id = data.get("room_id")
        if not isinstance(room_id, str) or not room_id:
            raise ValueError("room_id is required")
        if self.rooms.leave(room_id, connection.id):
            logger.info("ROOM_LEFT room_id=%s connection_id=%s", room_id, connection.id)
        await self._send(connection, Frame(protocol.ROOM_LEFT, {"room_id": room_id}))

    async def on_send_message(self, connection: Connection, data: Dict[str, Any]) -> None:
        sender = data.get("sender")
        receiver = data.get("receiver")
        if not is_valid_identifier(sender) or not is_valid_identifier(receiver):
            raise ValueError("sender and receiver must be valid user ids")
        if data.get("room_id") != conversation_id(sender, receiver):
            raise ValueError("room_id does not match sender and receiver")
        identity = self.registry.user_for(connection.id) or connection.auth_user_id
        if identity is not None and identity != sender:
            raise ValueError("sender does not match the user declared on this connection")
        text = data.get("text")
        if not isinstance(text, str) or not text.strip():
            raise ValueError("text is required")
        client_temp_id = data.get("client_temp_id")
        if client_temp_id is not None and not isinstance(client_temp_id, str):
            raise ValueError("client_temp_id must be a string")

        try:
            await self.publish_message(sender, receiver, text=text, client_temp_id=client_temp_id)
        except UserNotFound as exc:
            raise ValueError(str(exc)) from exc
        except Exception:
            # The REST path is the one that reports persistence failures to the sender.
            logger.exception(
                "MESSAGE_PERSIST_FAILED source=socket sender_id=%s receiver_id=%s client_temp_id=%s",
                sender,
                receiver,
                client_temp_id,
            )

    async def on_unsend_temp(self, connection: Connection, data: Dict[str, Any]) -> None:
        client_temp_id = data.get("client_temp_id")
        if not isinstance(client_temp_id, str) or not client_temp_id:
            raise ValueError("client_temp_id is required")
        user_id = self.registry.user_for(connection.id) or connection.auth_user_id
        if user_id is None:
            raise ValueError("Declare a user before unsending messages")

        record = await run_in_threadpool(self.store.find_by_temp_id, user_id, client_temp_id)
        if record is None:
            logger.info("UNSEND_TEMP_NOOP user_id=%s client_temp_id=%s", user_id, client_temp_id)
            return
        await self.delete_message(record.id)

    # ------------------------------------------------------------------
    # Operations shared with the REST routes
    # ------------------------------------------------------------------

    async def register_presence(self, connection: Connection, user_id: str) -> None:
        went_online = self.registry.add_connection(user_id, connection.id)
        logger.info(
            "PRESENCE_REGISTERED user_id=%s connection_id=%s went_online=%s",
            user_id,
            connection.id,
            went_online,
        )
        if went_online:
            await self._announce_status(user_id, True, None)
        await self._broadcast_online_users()

    async def publish_message(self, sender_id: str, receiver_id: str, **fields: Any) -> MessageOut:
        """Persist a message, then deliver it to whoever is in the room right now."""
        record = await run_in_threadpool(self.store.create, sender_id, receiver_id, **fields)
        await self.emit_to_room(
            conversation_id(sender_id, receiver_id),
            Frame(protocol.MESSAGE, record.model_dump(mode="json")),
        )
        return record

    async def delete_message(self, message_id: str) -> Optional[MessageOut]:
        """Delete through the store; broadcast only if the store confirms it."""
        record = await run_in_threadpool(self.store.delete, message_id)
        if record is None:
            return None
        if self.upload_dir is not None:
            discard_attachments(record, self.upload_dir)
        await self.emit_to_room(
            conversation_id(record.sender, record.receiver),
            Frame(protocol.MESSAGE_DELETED, {"id": record.id, "client_temp_id": record.client_temp_id}),
        )
        return record

    def is_online(self, user_id: str) -> bool:
        return self.registry.is_online(user_id)

    # ------------------------------------------------------------------
    # Broadcasting
    # ------------------------------------------------------------------

    async def emit_to_room(self, room_id: str, frame: Frame) -> int:
        delivered = 0
        for connection_id in sorted(self.rooms.members(room_id)):
            connection = self._connections.get(connection_id)
            if connection is not None and await self._send(connection, frame):
                delivered += 1
        return delivered

    async def emit_all(self, frame: Frame) -> int:
        delivered = 0
        for connection in list(self._connections.values()):
            if await self._send(connection, frame):
                delivered += 1
        return delivered

    async def _send(self, connection: Connection, frame: Frame) -> bool:
        try:
            await connection.send(frame)
            return True
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "SOCKET_SEND_FAILED connection_id=%s event=%s error=%s", connection.id, frame.event, exc
            )
            return False

    async def _reject(self, connection: Connection, event: Optional[str], detail: str) -> None:
        await self._send(connection, Frame(protocol.ERROR, {"event": event, "detail": detail}))

    async def _broadcast_online_users(self) -> None:
        await self.emit_all(Frame(protocol.GET_USERS, {"user_ids": self.registry.list_online_user_ids()}))

    async def _announce_status(self, user_id: str, is_online: bool, last_seen: Optional[datetime]) -> None:
        self._spawn(self._project_presence(user_id, is_online, last_seen))
        await self._emit_status(user_id, is_online, last_seen)

    async def _emit_status(self, user_id: str, is_online: bool, last_seen: Optional[datetime]) -> None:
        await self.emit_all(
            Frame(
                protocol.USER_STATUS_CHANGED,
                {
                    "user_id": user_id,
                    "is_online": is_online,
                    "last_seen": last_seen.isoformat() if last_seen else None,
                },
            )
        )

    async def _announce_departure(self, user_id: str, last_seen: Optional[datetime]) -> None:
        if last_seen is not None:
            if self.registry.is_online(user_id):
                # Reconnected before this ran; the online delta has already gone out.
                logger.info("PRESENCE_OFFLINE_SUPERSEDED user_id=%s", user_id)
            else:
                logger.info("PRESENCE_OFFLINE user_id=%s", user_id)
                await self._emit_status(user_id, False, last_seen)
        await self._broadcast_online_users()

    async def _project_presence(self, user_id: str, is_online: bool, last_seen: Optional[datetime]) -> None:
        async with self._projection_lock:
            try:
                await run_in_threadpool(self.directory.set_online_status, user_id, is_online, last_seen)
            except Exception:
                logger.exception("PRESENCE_PROJECTION_FAILED user_id=%s is_online=%s", user_id, is_online)

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _check_identity(self, connection: Connection, user_id: Any) -> None:
        if not is_valid_identifier(user_id):
            raise ValueError("user_id must be a valid user id")
        if connection.auth_user_id is not None and user_id != connection.auth_user_id:
            raise ValueError("user_id does not match the authenticated user")
        bound = self.registry.user_for(connection.id)
        if bound is not None and bound != user_id:
            raise ValueError(f"Connection already declared user {bound}")


def get_channel(request: Request) -> ChannelServer:
    return request.app.state.channel


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: Optional[str] = Query(default=None)):
    channel: ChannelServer = websocket.app.state.channel
    auth_user_id = None
    if token:
        auth_user_id = resolve_token(token)
        if auth_user_id is None:
            logger.warning("UNAUTHORIZED_ACCESS reason=bad_socket_token")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return
    await channel.serve(websocket, auth_user_id)
