"""Websocket connection to the realtime channel, read on a background thread."""
import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional

from websockets.exceptions import ConnectionClosed
from websockets.sync.client import ClientConnection, connect

from ..shared.protocol import Frame

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]


class RealtimeClient:
    """Dispatches server events to registered handlers.

    ``on_open`` callbacks run after every successful connect, so state that the
    server forgets on disconnect (presence, room membership) is re-announced on
    reconnect.
    """

    def __init__(self, url: str, open_timeout: float = 10):
        self.url = url
        self.open_timeout = open_timeout
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)
        self._open_hooks: List[Callable[[], None]] = []
        self._connection: Optional[ClientConnection] = None
        self._reader: Optional[threading.Thread] = None
        self._send_lock = threading.Lock()

    @property
    def connected(self) -> bool:
        return self._connection is not None

    def on(self, event: str, handler: Handler) -> None:
        self._handlers[event].append(handler)

    def off(self, event: str, handler: Handler) -> None:
        if handler in self._handlers.get(event, []):
            self._handlers[event].remove(handler)

    def on_open(self, hook: Callable[[], None]) -> None:
        self._open_hooks.append(hook)
        if self.connected:
            hook()

    def connect(self) -> None:
        if self.connected:
            return
        self._connection = connect(self.url, open_timeout=self.open_timeout)
        self._reader = threading.Thread(target=self._read_loop, name="realtime-reader", daemon=True)
        self._reader.start()
        logger.info("Realtime channel connected to %s", self.url)
        for hook in list(self._open_hooks):
            hook()

    def emit(self, event: str, data: Optional[Dict[str, Any]] = None) -> bool:
        connection = self._connection
        if connection is None:
            logger.warning("Dropping %s, realtime channel is not connected", event)
            return False
        try:
            with self._send_lock:
                connection.send(Frame(event, data or {}).to_json())
        except ConnectionClosed:
            logger.warning("Could not emit %s, connection closed", event)
            return False
        return True

    def close(self) -> None:
        connection, self._connection = self._connection, None
        if connection is not None:
            connection.close()
        reader = self._reader
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=self.open_timeout)
        self._reader = None

    def dispatch(self, raw: str) -> None:
        try:
            frame = Frame.from_json(raw)
        except ValueError:
            logger.warning("Ignoring malformed frame from server")
            return
        for handler in list(self._handlers.get(frame.event, [])):
            try:
                handler(frame.data)
            except Exception:  # noqa: BLE001
                logger.exception("Handler for %s failed", frame.event)

    def _read_loop(self) -> None:
        connection = self._connection
        if connection is None:
            return
        try:
            for raw in connection:
                if isinstance(raw, bytes):
                    raw = raw.decode("utf-8", errors="replace")
                self.dispatch(raw)
        except ConnectionClosed:
            pass
        finally:
            if self._connection is connection:
                self._connection = None
                logger.info("Realtime channel disconnected")
