import asyncio, logging
from dataclasses import asdict
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .settings import settings
from .state import catalog
from .api import router as api_router
from .bridge import BridgeConfig, TouchWandBridge
from .dahua import DahuaCamera
from .realtime import broadcaster
from .sse import sse_stream

logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL, "INFO"))
# httpx logs request URLs at INFO; the hub login URL carries the password
logging.getLogger("httpx").setLevel(logging.WARNING)
log = logging.getLogger("startup")

BRIDGE_UID = "bridge"
CAMERA_RETRY_DELAY = 20

app = FastAPI(title="TouchWand Bridge", version="0.1.0")
app.include_router(api_router)
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

@app.on_event("startup")
async def on_start():
    await catalog.init_db()

    bridge = TouchWandBridge(BRIDGE_UID, BridgeConfig.from_settings(settings), catalog, broadcaster)
    app.state.bridge = bridge
    # login and socket setup run in the background so a down hub never blocks startup
    app.state.bridge_init = asyncio.create_task(bridge.initialize())

    if settings.DAHUA_URL:
        camera = DahuaCamera(settings.DAHUA_URL, settings.DAHUA_USER, settings.DAHUA_PASS,
                             settings.DAHUA_NVR_CHANNEL)
        camera.register_listener(lambda u: broadcaster.publish({"event": "camera", "data": asdict(u)}))
        app.state.camera = camera

        async def follow_alarm_stream():
            while True:
                await camera.run_alarm_stream()
                log.warning("Camera alarm stream closed; reopening in %ss", CAMERA_RETRY_DELAY)
                await asyncio.sleep(CAMERA_RETRY_DELAY)

        app.state.camera_stream = asyncio.create_task(follow_alarm_stream())

@app.on_event("shutdown")
async def on_stop():
    for name in ("camera_stream", "bridge_init"):
        task = getattr(app.state, name, None)
        if task is not None and not task.done():
            task.cancel()
    camera = getattr(app.state, "camera", None)
    if camera is not None:
        await camera.close()
    bridge = getattr(app.state, "bridge", None)
    if bridge is not None:
        await bridge.dispose()

@app.get("/api/v1/status/stream")
async def stream():
    return sse_stream(broadcaster.register())

@app.get("/")
def root():
    return {"name": "touchwand-bridge", "status": "ok"}
