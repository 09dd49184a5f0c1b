# file: reliefsync/services/transport.py

import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

import socketio

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Union[None, Awaitable[None]]]

# Room control events understood by the relay server
JOIN_USER = "join"
JOIN_ROOM = "join_room"
LEAVE_ROOM = "leave_room"
CONTROL_EVENTS = (JOIN_USER, JOIN_ROOM, LEAVE_ROOM)


class Transport(ABC):
    """
    Push channel shared by the stores of one session.

    Delivery is best effort: emits are fire-and-forget, connection failures
    are logged rather than raised, and nothing is retried. Stores treat what
    arrives here as hints; REST responses stay authoritative.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Handler]] = {}
        self._bound: Set[str] = set()
        self.rooms: Set[str] = set()

    @property
    @abstractmethod
    def connected(self) -> bool:
        ...

    @abstractmethod
    async def _open(self) -> None:
        ...

    @abstractmethod
    async def _close(self) -> None:
        ...

    @abstractmethod
    async def _send(self, event: str, payload: Any) -> None:
        ...

    def _bind(self, event: str) -> None:
        """Hook for transports that must register a dispatcher per event name."""

    async def connect(self) -> bool:
        if self.connected:
            return True
        try:
            await self._open()
        except Exception as e:
            logger.warning(f"Socket connection failed: {e}")
            return False
        logger.info("Socket connected")
        return True

    async def disconnect(self) -> None:
        if not self.connected:
            return
        await self._close()
        self.rooms.clear()
        logger.info("Socket disconnected")

    async def join_user_room(self, user_id: Optional[str]) -> None:
        if not self.connected or not user_id:
            return
        await self._control(JOIN_USER, user_id)
        self.rooms.add(user_id)

    async def join_room(self, room: Optional[str]) -> None:
        if not self.connected or not room:
            return
        await self._control(JOIN_ROOM, room)
        self.rooms.add(room)

    async def leave_room(self, room: Optional[str]) -> None:
        if not self.connected or not room:
            return
        await self._control(LEAVE_ROOM, room)
        self.rooms.discard(room)

    async def _control(self, event: str, payload: Any) -> None:
        try:
            await self._send(event, payload)
        except Exception as e:
            logger.warning(f"Room control {event} {payload} failed: {e}")

    async def on(self, event: str, handler: Handler) -> None:
        if not self.connected:
            await self.connect()
        self._listeners.setdefault(event, []).append(handler)
        if event not in self._bound:
            self._bind(event)
            self._bound.add(event)

    def off(self, event: str, handler: Optional[Handler] = None) -> None:
        if handler is None:
            self._listeners[event] = []
            return
        self._listeners[event] = [h for h in self._listeners.get(event, []) if h is not handler]

    def handlers(self, event: str) -> List[Handler]:
        return list(self._listeners.get(event, []))

    async def emit(self, event: str, payload: Any = None) -> None:
        if not self.connected and not await self.connect():
            logger.warning(f"Dropping {event}: socket not connected")
            return
        try:
            await self._send(event, payload)
        except Exception as e:
            logger.warning(f"Emit {event} failed: {e}")

    async def dispatch(self, event: str, payload: Any) -> None:
        """Runs every handler for `event`; a failing handler does not stop the others."""
        for handler in self.handlers(event):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Handler for {event} failed on payload {payload!r}")


class SocketIOTransport(Transport):
    def __init__(self, url: str, headers: Optional[Dict[str, str]] = None,
                 client: Optional[socketio.AsyncClient] = None):
        super().__init__()
        self.url = url
        self.headers = headers or {}
        self._sio = client or socketio.AsyncClient(reconnection=False)
        self._sio.on("disconnect", handler=self._on_disconnect)

    @property
    def connected(self) -> bool:
        return bool(self._sio.connected)

    async def _on_disconnect(self, *args) -> None:
        self.rooms.clear()
        logger.info("Socket disconnected")

    async def _open(self) -> None:
        await self._sio.connect(self.url, headers=self.headers)

    async def _close(self) -> None:
        await self._sio.disconnect()

    async def _send(self, event: str, payload: Any) -> None:
        await self._sio.emit(event, payload)

    def _bind(self, event: str) -> None:
        async def relay(*args):
            await self.dispatch(event, args[0] if args else None)

        self._sio.on(event, handler=relay)
