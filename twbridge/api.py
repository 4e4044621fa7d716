from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel
from typing import Optional, Any
from .bridge import TouchWandBridge, ThingStatus
from .units import THING_TYPES

router = APIRouter(prefix="/api/v1")

UNIT_TYPES_BY_THING_TYPE = {v: k for k, v in THING_TYPES.items()}

class CommandRequest(BaseModel):
    command: str
    value: Optional[Any] = None

class CameraCommandRequest(BaseModel):
    channel: str
    command: Any

def get_bridge(request: Request) -> TouchWandBridge:
    bridge = getattr(request.app.state, "bridge", None)
    if bridge is None:
        raise HTTPException(503, "Bridge not initialized")
    return bridge

@router.get("/bridge")
def bridge_status(request: Request):
    return get_bridge(request).status_dict()

@router.get("/units")
def list_units(request: Request, type: Optional[str] = None):
    bridge = get_bridge(request)
    out = []
    for u in bridge.catalog.units(bridge.uid):
        if type and u["type"] != type:
            continue
        handler = bridge.get_update_listener(u["id"])
        out.append({**u, "channels": dict(handler.channel_states) if handler else {}})
    return out

@router.get("/units/{unit_id}")
def get_unit(request: Request, unit_id: str):
    bridge = get_bridge(request)
    u = bridge.catalog.get_unit(unit_id)
    if not u:
        raise HTTPException(404, "Unit not found")
    handler = bridge.get_update_listener(unit_id)
    return {**u, "channels": dict(handler.channel_states) if handler else {}}

@router.post("/units/{unit_id}/command")
async def unit_command(request: Request, unit_id: str, req: CommandRequest):
    bridge = get_bridge(request)
    if bridge.status is not ThingStatus.ONLINE:
        raise HTTPException(409, f"Bridge is {bridge.status.value}")
    try:
        res = await bridge.handle_command(unit_id, req.command, req.value)
    except KeyError:
        raise HTTPException(404, "Unit not found")
    except ValueError as e:
        raise HTTPException(400, str(e))
    if res is None:
        raise HTTPException(502, "Hub did not answer")
    return {"status": "ok", "result": res}

@router.get("/discovery")
def list_discovery_results(request: Request):
    bridge = get_bridge(request)
    return bridge.catalog.results(bridge.uid)

@router.post("/discovery/scan")
async def scan(request: Request):
    bridge = get_bridge(request)
    if bridge.discovery is None:
        raise HTTPException(409, f"Bridge is {bridge.status.value}")
    results = await bridge.discovery.scan()
    return {"status": "ok", "found": len(results), "results": results}

@router.post("/discovery/{unit_id}/approve")
def approve(request: Request, unit_id: str):
    bridge = get_bridge(request)
    for r in bridge.catalog.results(bridge.uid):
        if r["unit_id"] == unit_id:
            handler = bridge.add_unit(unit_id, UNIT_TYPES_BY_THING_TYPE[r["thing_type"]])
            bridge.catalog.remove_result(r["thing_uid"])
            return {"status": "ok", "unit_id": handler.id, "type": handler.unit_type}
    raise HTTPException(404, "Discovery result not found")

@router.get("/camera")
def camera_state(request: Request):
    camera = getattr(request.app.state, "camera", None)
    if camera is None:
        raise HTTPException(404, "No camera configured")
    return camera.channel_states

@router.post("/camera/command")
async def camera_command(request: Request, req: CameraCommandRequest):
    camera = getattr(request.app.state, "camera", None)
    if camera is None:
        raise HTTPException(404, "No camera configured")
    try:
        res = await camera.handle_command(req.channel, req.command)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {"status": "ok" if res is not None else "ignored"}
