"""Bridge to one TouchWand hub.

Owns the REST client, the event stream and the discovery service for the
hub, reports its own status, and routes unit updates to the unit handlers
registered on it.
"""
import asyncio, enum, json, logging, socket
from dataclasses import dataclass
from typing import Any, Dict, Optional
from .discovery import TouchWandUnitDiscoveryService
from .realtime import Broadcaster
from .state import Catalog
from .touchwand_client import TouchWandRestClient
from .touchwand_ws import TouchWandWebSocket
from .units import UnitData, UnitHandler, make_handler

log = logging.getLogger("bridge")


class ThingStatus(str, enum.Enum):
    UNKNOWN = "UNKNOWN"
    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"


class ThingStatusDetail(str, enum.Enum):
    NONE = "NONE"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    COMMUNICATION_ERROR = "COMMUNICATION_ERROR"


class ConfigurationError(ValueError):
    pass


@dataclass
class BridgeConfig:
    host: str
    port: int = 80
    user: str = ""
    password: str = ""
    status_refresh_time: int = 20
    add_secondary_units: bool = False

    @classmethod
    def from_settings(cls, settings) -> "BridgeConfig":
        return cls(
            host=settings.TW_HOST,
            port=settings.TW_PORT,
            user=settings.TW_USER,
            password=settings.TW_PASS,
            status_refresh_time=settings.STATUS_REFRESH_TIME,
            add_secondary_units=settings.ADD_SECONDARY_UNITS,
        )


async def validate_config(config: BridgeConfig):
    if not config.host:
        raise ConfigurationError("Bridge host is not set")
    try:
        port = int(config.port)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Bridge port {config.port!r} is not a number") from None
    if not 0 < port < 65536:
        raise ConfigurationError(f"Bridge port {port} out of range")
    try:
        await asyncio.get_running_loop().getaddrinfo(config.host, port)
    except (socket.gaierror, UnicodeError) as e:
        raise ConfigurationError(f"Bridge host {config.host} is not valid: {e}") from None


class TouchWandBridge:
    def __init__(self, bridge_uid: str, config: BridgeConfig, catalog: Catalog,
                 broadcaster: Optional[Broadcaster] = None,
                 client: Optional[TouchWandRestClient] = None,
                 websocket_factory=TouchWandWebSocket,
                 discovery_factory=TouchWandUnitDiscoveryService):
        self.uid = bridge_uid
        self.config = config
        self.catalog = catalog
        self.broadcaster = broadcaster
        self.client = client or TouchWandRestClient()
        self._websocket_factory = websocket_factory
        self._discovery_factory = discovery_factory
        self.websocket: Optional[TouchWandWebSocket] = None
        self.discovery: Optional[TouchWandUnitDiscoveryService] = None
        self.status = ThingStatus.UNKNOWN
        self.status_detail = ThingStatusDetail.NONE
        self.status_description = ""
        self._unit_update_listeners: Dict[str, UnitHandler] = {}
        self._refresh_job: Optional[asyncio.Task] = None

    def update_status(self, status: ThingStatus, detail: ThingStatusDetail = ThingStatusDetail.NONE,
                      description: str = ""):
        self.status = status
        self.status_detail = detail
        self.status_description = description
        log.info("Bridge %s is %s (%s) %s", self.uid, status.value, detail.value, description)
        self._publish({"event": "bridge", "data": self.status_dict()})

    def status_dict(self) -> Dict[str, Any]:
        return {
            "uid": self.uid,
            "status": self.status.value,
            "detail": self.status_detail.value,
            "description": self.status_description,
            "websocket": self.websocket.state.value if self.websocket else None,
            "discovery_running": bool(self.discovery and self.discovery.background_running),
        }

    def is_add_secondary_controller_units(self) -> bool:
        return self.config.add_secondary_units

    def is_unit_known(self, unit_id: str) -> bool:
        return unit_id in self._unit_update_listeners

    async def initialize(self):
        self.update_status(ThingStatus.UNKNOWN)
        try:
            await validate_config(self.config)
        except ConfigurationError as e:
            log.warning("Bridge IP/PORT config is not set or not valid: %s", e)
            self.update_status(ThingStatus.OFFLINE, ThingStatusDetail.CONFIGURATION_ERROR, str(e))
            return

        reachable = await self.client.connect(self.config.user, self.config.password,
                                              self.config.host, self.config.port)
        if not reachable:
            self.update_status(ThingStatus.OFFLINE, ThingStatusDetail.COMMUNICATION_ERROR,
                               "Login to hub failed")
            return

        self.update_status(ThingStatus.ONLINE)
        self.discovery = self._discovery_factory(self.uid, self.client, self.catalog,
                                                 self.is_add_secondary_controller_units,
                                                 self.is_unit_known)
        self.discovery.activate()
        self.discovery.start_background_discovery()

        self.websocket = self._websocket_factory(self.config.host)
        self.websocket.register_listener(self)
        await self.websocket.connect()

        if self.config.status_refresh_time > 0:
            self._refresh_job = asyncio.create_task(self._refresh_loop())

    # unit status listener

    def on_data_received(self, unit: UnitData):
        self.catalog.record_unit(self.uid, unit)
        self._publish({"event": "unit", "data": unit.model_dump(by_alias=False)})
        listener = self._unit_update_listeners.get(unit.id)
        if listener is not None:
            listener.on_item_status_update(unit)

    def register_update_listener(self, listener: UnitHandler) -> bool:
        log.debug("Adding Status update listener for device %s", listener.id)
        if listener.id in self._unit_update_listeners:
            return False
        self._unit_update_listeners[listener.id] = listener
        return True

    def unregister_update_listener(self, listener: UnitHandler) -> bool:
        log.debug("Remove Status update listener for device %s", listener.id)
        self._unit_update_listeners.pop(listener.id, None)
        return True

    def get_update_listener(self, unit_id: str) -> Optional[UnitHandler]:
        return self._unit_update_listeners.get(unit_id)

    def add_unit(self, unit_id: str, unit_type: str) -> UnitHandler:
        """Create and register the handler for a unit, e.g. an approved discovery result."""
        existing = self._unit_update_listeners.get(str(unit_id))
        if existing is not None:
            return existing
        handler = make_handler(unit_id, unit_type, self._on_channel_state)
        self.register_update_listener(handler)
        return handler

    def _on_channel_state(self, unit_id: str, channel: str, value: Any):
        self._publish({"event": "channel", "data": {"unit_id": unit_id, "channel": channel, "value": value}})

    def _publish(self, event: Dict[str, Any]):
        if self.broadcaster is not None:
            self.broadcaster.publish(event)

    # commands and polling

    async def handle_command(self, unit_id: str, command: str, value=None,
                             unit_type: Optional[str] = None) -> Optional[str]:
        if unit_type is None:
            handler = self._unit_update_listeners.get(unit_id)
            unit = None if handler else self.catalog.get_unit(unit_id)
            if handler is None and unit is None:
                raise KeyError(unit_id)
            unit_type = handler.unit_type if handler else unit["type"]
        return await self.client.unit_action(unit_id, unit_type, command, value)

    async def refresh_unit(self, unit_id: str) -> Optional[UnitData]:
        response = await self.client.get_unit_by_id(unit_id)
        if response is None:
            return None
        try:
            unit = UnitData.model_validate(json.loads(response))
        except ValueError as e:
            log.warning("Could not parse unit %s response: %s", unit_id, e)
            return None
        self.on_data_received(unit)
        return unit

    async def _refresh_loop(self):
        while True:
            await asyncio.sleep(self.config.status_refresh_time)
            for unit_id in list(self._unit_update_listeners):
                try:
                    await self.refresh_unit(unit_id)
                except Exception:
                    log.exception("Status refresh failed for unit %s", unit_id)

    async def dispose(self):
        if self._refresh_job is not None:
            self._refresh_job.cancel()
            self._refresh_job = None
        if self.discovery is not None:
            self.discovery.deactivate()
            self.discovery = None
        if self.websocket is not None:
            self.websocket.unregister_listener(self)
            self.websocket.dispose()
        await self.client.close()
