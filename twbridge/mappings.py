# Maps unit type + command to the JSON body posted to /units/action.
# Every device command goes through the same endpoint; only the payload differs.
from typing import Any, Callable, Dict, Optional
from .units import (TYPE_SWITCH, TYPE_SHUTTER, TYPE_DIMMER,
                    SWITCH_STATUS_ON, SWITCH_STATUS_OFF)

SHUTTER_UP = 255
SHUTTER_DOWN = 0

ACTION_MAP: Dict[str, Dict[str, Callable[[Any], Dict[str, Any]]]] = {
    TYPE_SWITCH: {
        "on": lambda v: {"value": SWITCH_STATUS_ON},
        "off": lambda v: {"value": SWITCH_STATUS_OFF},
    },
    TYPE_SHUTTER: {
        "up": lambda v: {"value": SHUTTER_UP, "type": "height"},
        "down": lambda v: {"value": SHUTTER_DOWN, "type": "height"},
        "stop": lambda v: {"value": 0, "type": "stop"},
        "position": lambda v: {"value": int(v)},
    },
    TYPE_DIMMER: {
        "position": lambda v: {"value": int(v)},
    },
}

def unit_id_value(unit_id: str):
    # the hub expects numeric ids unquoted
    return int(unit_id) if str(unit_id).isdigit() else unit_id

def build_action(unit_id: str, unit_type: str, command: str, value: Optional[Any] = None) -> Dict[str, Any]:
    if unit_type not in ACTION_MAP:
        raise ValueError(f"Unit type {unit_type} does not accept commands")
    mapping = ACTION_MAP[unit_type]
    if command not in mapping:
        raise ValueError(f"Command {command} not supported for unit type {unit_type}")
    if command == "position" and value is None:
        raise ValueError("position command requires a value")
    try:
        body = mapping[command](value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid value {value!r} for command {command}") from None
    return {"id": unit_id_value(unit_id), **body}
