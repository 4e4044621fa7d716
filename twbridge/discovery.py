import asyncio, json, logging, time
from typing import Any, Callable, Dict, List, Optional
from .state import Catalog
from .touchwand_client import TouchWandRestClient
from .units import THING_TYPES

log = logging.getLogger("discovery")

SCAN_INTERVAL = 120
LINK_DISCOVERY_SERVICE_INITIAL_DELAY = 5


def is_secondary_unit(id_data: Any) -> bool:
    """Units paired through a secondary controller carry a non-empty idData."""
    return id_data is not None and id_data != {}


class TouchWandUnitDiscoveryService:
    """Polls the hub's unit list and reports supported units to the catalog.

    Results are scoped to the owning bridge. Each scan first drops results
    older than the previous scan, and a completed scan drops everything that
    it did not see again, so units removed from the hub are forgotten.
    """

    def __init__(self, bridge_uid: str, client: TouchWandRestClient, catalog: Catalog,
                 add_secondary_units: Callable[[], bool] = lambda: False,
                 is_known_unit: Callable[[str], bool] = lambda unit_id: False,
                 scan_interval: float = SCAN_INTERVAL,
                 initial_delay: float = LINK_DISCOVERY_SERVICE_INITIAL_DELAY):
        self.bridge_uid = bridge_uid
        self._client = client
        self._catalog = catalog
        self._add_secondary_units = add_secondary_units
        self._is_known_unit = is_known_unit
        self._scan_interval = scan_interval
        self._initial_delay = initial_delay
        self._scanning_job: Optional[asyncio.Task] = None
        self.timestamp_of_last_scan = 0.0
        self.last_scan_completed = False

    @property
    def background_running(self) -> bool:
        return self._scanning_job is not None and not self._scanning_job.done()

    def activate(self):
        self._catalog.remove_older_results(time.time(), self.bridge_uid)
        log.debug("activate discovery service")

    def deactivate(self):
        self.stop_background_discovery()
        self._catalog.remove_older_results(time.time(), self.bridge_uid)
        log.debug("deactivate discovery services")

    async def start_scan(self) -> List[Dict[str, Any]]:
        self._catalog.remove_older_results(self.timestamp_of_last_scan, self.bridge_uid)
        started = time.time()
        self.last_scan_completed = False

        log.debug("Starting TouchWand discovery on bridge %s", self.bridge_uid)
        response = await self._client.list_units()
        if response is None:
            return []
        log.debug("Received list units response %s", response)

        try:
            units = json.loads(response)
        except ValueError as e:
            log.warning("Could not parse list units response %s", e)
            return []
        if not isinstance(units, list):
            log.warning("List units response is not a list: %r", response)
            return []
        self.timestamp_of_last_scan = started
        self.last_scan_completed = True

        add_secondary = self._add_secondary_units()
        results = []
        for unit in units:
            try:
                unit_id = str(unit["id"])
                name = str(unit["name"])
                unit_type = unit["type"]
                id_data = unit.get("idData")
            except (KeyError, TypeError) as e:
                log.warning("Skipped malformed unit entry %r: %s", unit, e)
                continue
            if not add_secondary and is_secondary_unit(id_data):
                log.debug("Skipped secondary controller unit : %s idData %s", name, id_data)
                continue
            if self._is_known_unit(unit_id):
                log.debug("Skipped unit %s already tracked by bridge %s", name, self.bridge_uid)
                continue
            thing_type = THING_TYPES.get(unit_type)
            if thing_type is None:
                log.debug("Skipped unit %s of unsupported type %s", name, unit_type)
                continue
            log.debug("id is %s name %s type %s connectivity %s", unit_id, name, unit_type,
                      unit.get("connectivity"))
            results.append(self._catalog.thing_discovered(
                self.bridge_uid, thing_type, unit_id, name,
                properties={"id": unit_id, "name": name},
            ))
        return results

    def stop_scan(self):
        self._catalog.remove_older_results(self.timestamp_of_last_scan, self.bridge_uid)

    async def scan(self) -> List[Dict[str, Any]]:
        """One discovery cycle. Stale results are only evicted when the hub answered."""
        results = await self.start_scan()
        if self.last_scan_completed:
            self.stop_scan()
        return results

    def start_background_discovery(self):
        if self.background_running:
            return
        log.debug("Start TouchWand units background discovery")
        self._scanning_job = asyncio.create_task(self._scan_loop())

    def stop_background_discovery(self):
        if self._scanning_job is None:
            return
        log.debug("Stop TouchWand device units discovery")
        if not self._scanning_job.done():
            self._scanning_job.cancel()
        self._scanning_job = None

    async def _scan_loop(self):
        await asyncio.sleep(self._initial_delay)
        while True:
            try:
                await self.scan()
            except Exception:
                log.exception("TouchWand discovery cycle failed")
            await asyncio.sleep(self._scan_interval)
