import asyncio, logging
import httpx
from typing import Any, Dict, Optional
from .mappings import build_action

log = logging.getLogger("touchwand")

REQUEST_TIMEOUT = 10  # seconds
UNAUTHORIZED = "Unauthorized"

CMD_LOGIN = "/auth/login"
CMD_LIST_UNITS = "/units/listUnits"
CMD_LIST_SCENARIOS = "/scenarios/listScenarios"
CMD_UNIT_ACTION = "/units/action"
CMD_GET_UNIT_BY_ID = "/units/getUnitByID"


class TouchWandRestClient:
    """Request/response calls against the hub's REST API.

    Every call returns the raw response body, or None when the hub could not be
    reached. Nothing is raised to the caller. The session cookie obtained by
    connect() lives on the underlying httpx client.
    """

    def __init__(self, http: Optional[httpx.AsyncClient] = None):
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=REQUEST_TIMEOUT)
        self._lock = asyncio.Lock()
        self.host: Optional[str] = None
        self.port: Optional[int] = None
        self.is_connected = False

    async def connect(self, user: str, password: str, host: str, port) -> bool:
        self.host = host
        self.port = port
        response = await self._send_command(CMD_LOGIN, "GET", params={"user": user, "psw": password})
        self.is_connected = response is not None and response != UNAUTHORIZED
        if not self.is_connected:
            log.warning("Login to TouchWand hub %s:%s failed", host, port)
        return self.is_connected

    async def list_units(self) -> Optional[str]:
        return await self._send_command(CMD_LIST_UNITS, "GET")

    async def list_scenarios(self) -> Optional[str]:
        return await self._send_command(CMD_LIST_SCENARIOS, "GET")

    async def get_unit_by_id(self, unit_id: str) -> Optional[str]:
        return await self._send_command(CMD_GET_UNIT_BY_ID, "GET", params={"id": unit_id})

    async def send_action(self, payload: Dict[str, Any]) -> Optional[str]:
        return await self._send_command(CMD_UNIT_ACTION, "POST", payload=payload)

    async def unit_action(self, unit_id: str, unit_type: str, command: str, value=None) -> Optional[str]:
        return await self.send_action(build_action(unit_id, unit_type, command, value))

    # convenience helpers
    async def switch_on_off(self, unit_id: str, on: bool):
        return await self.unit_action(unit_id, "Switch", "on" if on else "off")

    async def shutter_up(self, unit_id: str):
        return await self.unit_action(unit_id, "shutter", "up")

    async def shutter_down(self, unit_id: str):
        return await self.unit_action(unit_id, "shutter", "down")

    async def shutter_stop(self, unit_id: str):
        return await self.unit_action(unit_id, "shutter", "stop")

    async def shutter_position(self, unit_id: str, position: int):
        return await self.unit_action(unit_id, "shutter", "position", position)

    async def dimmer_position(self, unit_id: str, position: int):
        return await self.unit_action(unit_id, "dimmer", "position", position)

    async def close(self):
        if self._owns_http:
            await self._http.aclose()

    def _build_url(self, command: str) -> str:
        return f"http://{self.host}:{self.port}{command}"

    async def _send_command(self, command: str, method: str,
                            params: Optional[Dict[str, Any]] = None,
                            payload: Optional[Dict[str, Any]] = None) -> Optional[str]:
        if not self.host:
            log.warning("TouchWand hub address not set, dropping %s", command)
            return None
        url = self._build_url(command)
        async with self._lock:
            try:
                r = await self._http.request(method, url, params=params, json=payload, timeout=REQUEST_TIMEOUT)
            except httpx.InvalidURL as e:
                log.warning("Error building URL %s : %s", url, e)
                return None
            except httpx.HTTPError as e:
                log.warning("Error open connection to %s : %s", self.host, e)
                return None
        return r.text
