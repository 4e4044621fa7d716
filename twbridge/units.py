"""Unit data model and per-type state handlers for TouchWand units.

A handler owns one unit id and turns each UnitData update into channel
states (see CHANNEL_* below).
"""
import logging
from typing import Any, Callable, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field

log = logging.getLogger("units")

TYPE_SWITCH = "Switch"
TYPE_SHUTTER = "shutter"
TYPE_DIMMER = "dimmer"
TYPE_WALLCONTROLLER = "WallController"
TYPE_ALARMSENSOR = "AlarmSensor"

SUPPORTED_TOUCHWAND_TYPES = (TYPE_SWITCH, TYPE_SHUTTER, TYPE_DIMMER, TYPE_WALLCONTROLLER, TYPE_ALARMSENSOR)

# unit type as reported by the hub -> thing type used for discovery results
THING_TYPES: Dict[str, str] = {
    TYPE_SWITCH: "switch",
    TYPE_SHUTTER: "shutter",
    TYPE_DIMMER: "dimmer",
    TYPE_WALLCONTROLLER: "wallcontroller",
    TYPE_ALARMSENSOR: "alarmsensor",
}

STATUS_ALIVE = "ALIVE"

SWITCH_STATUS_ON = 255
SWITCH_STATUS_OFF = 0

SENSOR_TYPE_TEMPERATURE = 1
SENSOR_TYPE_LUMINANCE = 3
SENSOR_TYPE_LEAK = 6
SENSOR_TYPE_DOOR_WINDOW = 102
SENSOR_TYPE_MOTION = 103

CHANNEL_SWITCH = "switch"
CHANNEL_SHUTTER = "shutter"
CHANNEL_BRIGHTNESS = "brightness"
CHANNEL_WALLACTION = "wallaction"
CHANNEL_BATTERY_LEVEL = "battery-level"
CHANNEL_BATTERY_LOW = "battery-low"
CHANNEL_ILLUMINATION = "illumination"
CHANNEL_TEMPERATURE = "temperature"
CHANNEL_LEAK = "leak"
CHANNEL_MOTION = "motion"
CHANNEL_DOORWINDOW = "door-window"


class UnitData(BaseModel):
    """One unit as reported by the hub. Frozen: a newer update replaces it.

    Only the top level is frozen. curr_status and id_data hold the decoded
    JSON as received and are shared by every listener, so handlers read them
    and never modify them.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore",
                              coerce_numbers_to_str=True)

    id: str
    name: str = ""
    type: str
    status: str = ""
    curr_status: Any = Field(default=None, alias="currStatus")
    id_data: Any = Field(default=None, alias="idData")

    @property
    def is_alive(self) -> bool:
        return self.status == STATUS_ALIVE

    @property
    def is_supported(self) -> bool:
        return self.type in SUPPORTED_TOUCHWAND_TYPES


def on_off(flag: bool) -> str:
    return "ON" if flag else "OFF"


def clamp_percent(value) -> int:
    return max(0, min(100, int(value)))


class UnitHandler:
    """Base handler; subclasses implement update_unit_state()."""
    unit_type = ""

    def __init__(self, unit_id: str, on_state: Optional[Callable[[str, str, Any], None]] = None):
        self.id = str(unit_id)
        self.channel_states: Dict[str, Any] = {}
        self._on_state = on_state

    def update_state(self, channel: str, value: Any):
        self.channel_states[channel] = value
        if self._on_state:
            self._on_state(self.id, channel, value)

    def on_item_status_update(self, unit: UnitData):
        if unit.type != self.unit_type:
            log.warning("Unit %s: handler for %s got %s update", self.id, self.unit_type, unit.type)
            return
        try:
            self.update_unit_state(unit)
        except (TypeError, ValueError, KeyError) as e:
            log.warning("Unit %s: unexpected status payload %r: %s", self.id, unit.curr_status, e)

    def update_unit_state(self, unit: UnitData):
        raise NotImplementedError


class SwitchHandler(UnitHandler):
    unit_type = TYPE_SWITCH

    def update_unit_state(self, unit: UnitData):
        self.update_state(CHANNEL_SWITCH, on_off(int(unit.curr_status) != SWITCH_STATUS_OFF))


class ShutterHandler(UnitHandler):
    unit_type = TYPE_SHUTTER

    def update_unit_state(self, unit: UnitData):
        self.update_state(CHANNEL_SHUTTER, clamp_percent(unit.curr_status))


class DimmerHandler(UnitHandler):
    unit_type = TYPE_DIMMER

    def update_unit_state(self, unit: UnitData):
        self.update_state(CHANNEL_BRIGHTNESS, clamp_percent(unit.curr_status))


class WallControllerHandler(UnitHandler):
    unit_type = TYPE_WALLCONTROLLER

    def update_unit_state(self, unit: UnitData):
        self.update_state(CHANNEL_WALLACTION, unit.curr_status)


class AlarmSensorHandler(UnitHandler):
    unit_type = TYPE_ALARMSENSOR

    BATT_LEVEL_LOW = 20
    BATT_LEVEL_LOW_HYS = 5

    def __init__(self, unit_id: str, on_state=None):
        super().__init__(unit_id, on_state)
        self.is_battery_low = False

    def update_unit_state(self, unit: UnitData):
        status = unit.curr_status
        if not isinstance(status, dict):
            raise TypeError("alarm sensor status must be an object")
        if status.get("batt") is not None:
            self.update_battery_level(int(status["batt"]))
        for sensor in status.get("sensorsStatus") or []:
            if sensor.get("type") == SENSOR_TYPE_LUMINANCE:
                self.update_state(CHANNEL_ILLUMINATION, float(sensor["value"]))
            elif sensor.get("type") == SENSOR_TYPE_TEMPERATURE:
                self.update_state(CHANNEL_TEMPERATURE, float(sensor["value"]))
        for b_sensor in status.get("bSensorsStatus") or []:
            state = bool(b_sensor["sensor"]["state"])
            sensor_type = b_sensor.get("sensorType")
            if sensor_type == SENSOR_TYPE_LEAK:
                self.update_state(CHANNEL_LEAK, on_off(state))
            elif sensor_type == SENSOR_TYPE_MOTION:
                self.update_state(CHANNEL_MOTION, on_off(state))
            elif sensor_type == SENSOR_TYPE_DOOR_WINDOW:
                self.update_state(CHANNEL_DOORWINDOW, "OPEN" if state else "CLOSED")

    def update_battery_level(self, level: int):
        self.update_state(CHANNEL_BATTERY_LEVEL, level)
        # once low, the level must climb past the hysteresis band to clear
        threshold = self.BATT_LEVEL_LOW + self.BATT_LEVEL_LOW_HYS if self.is_battery_low else self.BATT_LEVEL_LOW
        self.is_battery_low = level <= threshold
        self.update_state(CHANNEL_BATTERY_LOW, on_off(self.is_battery_low))


HANDLERS = {h.unit_type: h for h in (SwitchHandler, ShutterHandler, DimmerHandler,
                                     WallControllerHandler, AlarmSensorHandler)}


def make_handler(unit_id: str, unit_type: str, on_state=None) -> UnitHandler:
    try:
        return HANDLERS[unit_type](unit_id, on_state)
    except KeyError:
        raise ValueError(f"Unsupported unit type {unit_type}") from None
