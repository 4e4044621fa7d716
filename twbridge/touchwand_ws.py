"""WebSocket event stream from the TouchWand hub.

The hub pushes a JSON object per change; only ``UNIT_CHANGED`` events for
alive units of a supported type reach the listeners. Every socket event
(connected, message, closed, error) goes through handle_event(), so the
connection state machine can be driven without a live socket.

A dropped connection is retried after a fixed delay. dispose() latches the
client into SHUTTING_DOWN; nothing reconnects after that.
"""
import asyncio, enum, json, logging, threading
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, Union
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException
from .units import UnitData

log = logging.getLogger("touchwand.ws")

CONNECT_TIMEOUT = 10  # seconds
WEBSOCKET_RECONNECT_INTERVAL = CONNECT_TIMEOUT * 2
WS_ENDPOINT_TOUCHWAND = "/async"
SUBPROTOCOL = "relay_protocol"
HANDSHAKE = json.dumps({"myopenhab": "myopenhab"})
EVENT_UNIT_CHANGED = "UNIT_CHANGED"


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SHUTTING_DOWN = "shutting_down"


@dataclass(frozen=True)
class Connected:
    remote: Any = None

@dataclass(frozen=True)
class MessageReceived:
    data: Union[str, bytes]

@dataclass(frozen=True)
class Closed:
    code: Optional[int] = None
    reason: str = ""

@dataclass(frozen=True)
class Errored:
    error: BaseException

SocketEvent = Union[Connected, MessageReceived, Closed, Errored]


class UnitStatusUpdateListener(Protocol):
    def on_data_received(self, unit: UnitData) -> None: ...


def parse_unit_changed(msg: Union[str, bytes]) -> Optional[UnitData]:
    """Return the unit of a UNIT_CHANGED event, None for any other event type.

    Raises ValueError (including JSON and validation errors), KeyError or
    TypeError on a malformed payload.
    """
    obj = json.loads(msg)
    if not isinstance(obj, dict):
        raise TypeError("event is not a JSON object")
    if obj.get("type") != EVENT_UNIT_CHANGED:
        return None
    unit = obj["unit"]
    if not isinstance(unit, dict):
        raise TypeError("unit is not a JSON object")
    return UnitData.model_validate(unit)


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class TouchWandWebSocket:
    def __init__(self, host: str, reconnect_interval: float = WEBSOCKET_RECONNECT_INTERVAL,
                 connector=websockets.connect):
        self.host = host
        self.state = ConnectionState.DISCONNECTED
        self._reconnect_interval = reconnect_interval
        self._connector = connector
        self._listeners: List[UnitStatusUpdateListener] = []
        self._listeners_lock = threading.Lock()
        # guards state transitions into SHUTTING_DOWN and the pending reconnect flag
        self._reconnect_lock = threading.Lock()
        self._reconnect_pending = False
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._reader: Optional[asyncio.Task] = None
        self._ws = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def uri(self) -> str:
        return f"ws://{self.host}{WS_ENDPOINT_TOUCHWAND}"

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_pending

    async def connect(self) -> bool:
        if self.state is ConnectionState.SHUTTING_DOWN:
            return False
        self._loop = asyncio.get_running_loop()
        self.state = ConnectionState.CONNECTING
        try:
            ws = await self._connector(self.uri, subprotocols=[SUBPROTOCOL], open_timeout=CONNECT_TIMEOUT)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            log.warning("Could not connect webSocket URI %s message %s", self.uri, e)
            if self.state is not ConnectionState.SHUTTING_DOWN:
                self.state = ConnectionState.DISCONNECTED
            return False
        if self.state is ConnectionState.SHUTTING_DOWN:
            await ws.close()
            return False
        self._ws = ws
        try:
            await ws.send(HANDSHAKE)
        except (OSError, WebSocketException) as e:
            log.warning("Handshake send failed: %s", e)
        self.handle_event(Connected(getattr(ws, "remote_address", None)))
        self._reader = asyncio.create_task(self._receive_loop(ws))
        return True

    async def _receive_loop(self, ws):
        try:
            async for raw in ws:
                self.handle_event(MessageReceived(raw))
        except ConnectionClosed:
            pass
        except (OSError, WebSocketException) as e:
            self.handle_event(Errored(e))
            return
        self.handle_event(Closed(ws.close_code, ws.close_reason or ""))

    def handle_event(self, event: SocketEvent):
        if isinstance(event, Connected):
            log.debug("TouchWandWebSockets connected to %s", event.remote)
            if self.state is not ConnectionState.SHUTTING_DOWN:
                self.state = ConnectionState.CONNECTED
        elif isinstance(event, MessageReceived):
            self._on_message(event.data)
        elif isinstance(event, Closed):
            log.debug("Connection closed: %s - %s", event.code, event.reason)
            self._connection_lost()
        elif isinstance(event, Errored):
            log.warning("WebSocket Error: %s", event.error)
            self._connection_lost()
        else:
            raise TypeError(f"Unknown socket event {event!r}")

    def _on_message(self, msg):
        try:
            unit = parse_unit_changed(msg)
        except (ValueError, KeyError, TypeError) as e:
            log.warning("Could not parse websocket message %r: %s", msg, e)
            return
        if unit is None or not unit.is_alive:
            return
        if not unit.is_supported:
            log.debug("UNIT_CHANGED for unsupported unit type %s", unit.type)
            return
        log.debug("UNIT_CHANGED: name %s id %s status %s", unit.name, unit.id, unit.curr_status)
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener.on_data_received(unit)
            except Exception:
                log.exception("Listener %r failed on unit %s", listener, unit.id)

    def _connection_lost(self):
        self._ws = None
        if self.state is ConnectionState.SHUTTING_DOWN:
            return
        self.state = ConnectionState.DISCONNECTED
        log.debug("WebSocket dropped - reconnecting in %ss", self._reconnect_interval)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> bool:
        with self._reconnect_lock:
            if self._reconnect_pending or self.state is ConnectionState.SHUTTING_DOWN:
                return False
            if self._loop is None:
                self._loop = asyncio.get_running_loop()
            self._reconnect_pending = True
            self._reconnect_handle = self._loop.call_later(self._reconnect_interval, self._fire_reconnect)
        return True

    def _fire_reconnect(self):
        with self._reconnect_lock:
            self._reconnect_pending = False
            self._reconnect_handle = None
            if self.state is ConnectionState.SHUTTING_DOWN:
                return
        self._reconnect_task = self._loop.create_task(self._reconnect())

    async def _reconnect(self):
        if not await self.connect() and self.state is not ConnectionState.SHUTTING_DOWN:
            # the connection was up before, so keep retrying on the same cadence
            self._schedule_reconnect()

    def dispose(self):
        with self._reconnect_lock:
            if self.state is ConnectionState.SHUTTING_DOWN:
                return
            self.state = ConnectionState.SHUTTING_DOWN
            handle, self._reconnect_handle = self._reconnect_handle, None
            self._reconnect_pending = False
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        if _running_loop() is loop:
            self._shutdown(handle)
        else:
            loop.call_soon_threadsafe(self._shutdown, handle)

    def _shutdown(self, handle: Optional[asyncio.TimerHandle]):
        if handle is not None:
            handle.cancel()
        for task in (self._reconnect_task, self._reader):
            if task is not None and not task.done():
                task.cancel()
        ws, self._ws = self._ws, None
        if ws is not None:
            self._loop.create_task(self._close_socket(ws))

    async def _close_socket(self, ws):
        try:
            await ws.close()
        except (OSError, WebSocketException) as e:
            log.warning("Could not stop webSocketClient, message %s", e)

    def register_listener(self, listener: UnitStatusUpdateListener):
        with self._listeners_lock:
            if listener not in self._listeners:
                log.debug("Adding TouchWandWebSocket listener %r", listener)
                self._listeners.append(listener)

    def unregister_listener(self, listener: UnitStatusUpdateListener):
        with self._listeners_lock:
            if listener in self._listeners:
                log.debug("Removing TouchWandWebSocket listener %r", listener)
                self._listeners.remove(listener)

    @property
    def listeners(self) -> List[UnitStatusUpdateListener]:
        with self._listeners_lock:
            return list(self._listeners)
